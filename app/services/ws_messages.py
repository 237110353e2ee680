"""WebSocket message factory functions.

Each function returns a plain dict with a ``type`` field plus data fields.
The chat controller calls these factories and passes the result to its
``send`` callable.
"""

from __future__ import annotations


def session_list(*, sessions: list[dict], active_session_id: str) -> dict:
    """Sessions of the connected user, newest first.

    Compressed format: type=sl, sessions=s, active_session_id=asid
    """
    return {"type": "sl", "s": sessions, "asid": active_session_id}


def session_created(*, session: dict) -> dict:
    """A session was materialized on the first send.

    Compressed format: type=sc, session=s
    """
    return {"type": "sc", "s": session}


def session_selected(*, session_id: str, messages: list[dict]) -> dict:
    """Active session changed; carries its reloaded history.

    Compressed format: type=ss, session_id=sid, messages=m
    """
    return {"type": "ss", "sid": session_id, "m": messages}


def session_deleted(*, session_id: str, active_session_id: str) -> dict:
    """Session removed; carries the id that is active afterwards.

    Compressed format: type=sd, session_id=sid, active_session_id=asid
    """
    return {"type": "sd", "sid": session_id, "asid": active_session_id}


def attachment_loaded(
    *,
    name: str,
    kind: str,
    row_count: int,
    headers: list[str],
    summary: str,
) -> dict:
    """Tabular attachment parsed and ready for the next turn.

    Compressed format: type=al, name=n, kind=k, row_count=rc, headers=h, summary=su
    """
    return {
        "type": "al",
        "n": name,
        "k": kind,
        "rc": row_count,
        "h": headers,
        "su": summary,
    }


def attachment_error(*, name: str, error: str) -> dict:
    """Attachment could not be read as tabular data.

    Compressed format: type=ae, name=n, error=e
    """
    return {"type": "ae", "n": name, "e": error}


def message_started(*, user_message: dict, message_id: str) -> dict:
    """A turn began: the echoed user message and the empty model message id.

    Compressed format: type=ms, user_message=um, message_id=mid
    """
    return {"type": "ms", "um": user_message, "mid": message_id}


def chat_token(*, token: str, message_id: str) -> dict:
    """Single streamed text chunk of the model response.

    Compressed format: type=ct, token=t, message_id=mid
    """
    return {"type": "ct", "t": token, "mid": message_id}


def message_parts(*, message_id: str, parts: list[dict]) -> dict:
    """Structured parts that replace the streamed text of the message.

    Compressed format: type=mp, message_id=mid, parts=p
    """
    return {"type": "mp", "mid": message_id, "p": parts}


def message_grounding(*, message_id: str, grounding: dict) -> dict:
    """Search grounding (sources, queries) attached to the message.

    Compressed format: type=mg, message_id=mid, grounding=g
    """
    return {"type": "mg", "mid": message_id, "g": grounding}


def tool_result(
    *,
    message_id: str,
    charts: list[dict],
    tool_calls: list[dict],
) -> dict:
    """Charts and tool-call log produced by the tool-calling path.

    Compressed format: type=tr, message_id=mid, charts=ch, tool_calls=tc
    """
    return {"type": "tr", "mid": message_id, "ch": charts, "tc": tool_calls}


def chat_complete(
    *,
    message_id: str,
    content: str,
    cancelled: bool = False,
) -> dict:
    """Model response finished and persisted.

    Compressed format: type=cc, message_id=mid, content=c, cancelled=x
    Omit false flags.
    """
    result: dict = {"type": "cc", "mid": message_id, "c": content}
    if cancelled:
        result["x"] = True
    return result


def chat_error(*, error: str, details: str | None = None) -> dict:
    """Chat processing error occurred.

    Compressed format: type=ce, error=e, details=d
    Omit null fields.
    """
    result: dict = {"type": "ce", "e": error}
    if details:
        result["d"] = details
    return result
