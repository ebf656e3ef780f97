# bot/services/audit_log.py
from __future__ import annotations

import inspect
import logging
import uuid
from contextvars import ContextVar, Token
from functools import wraps
from pathlib import Path
from typing import Any, Awaitable, Callable, ClassVar, Iterable, Optional

from pydantic_core import to_jsonable_python

from coach_review.db.database import DataBase
from coach_review.db.schemas.audit_log import AuditLogCreate, AuditLogRead
from coach_review.db.schemas.submission import SubmissionRead
from coach_review.db.schemas.user import UserRead

logger = logging.getLogger("coach_review.audit")

# read-side methods never produce audit rows
READ_PREFIXES = ("get", "list", "subscribe", "count")
SUBMISSION_ARGS = ("submission_id", "submission")


def to_json(value: Any) -> Any:
    """JSON-friendly copy of ``value``; raw bytes are summarised, unknown objects stringified."""
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    return to_jsonable_python(value, fallback=str)


class AuditLogService:
    """
    Journal of the review workflow: who claimed, published, commented or
    changed roles, and what the call returned or raised.

    Entries go to the ``audit_log`` table and to the ``coach_review.audit`` logger.
    """

    _instance: ClassVar[Optional["AuditLogService"]] = None

    def __new__(cls) -> "AuditLogService":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if getattr(self, "_initialized", False):
            return
        self._actor: ContextVar[Optional[uuid.UUID]] = ContextVar("audit_actor", default=None)
        self._initialized = True

    async def log(
        self,
        *,
        action: str,
        actor_id: uuid.UUID | None = None,
        payload: Any | None = None,
    ) -> AuditLogRead:
        """
        Persist one entry.

        :param action: dotted label, e.g. ``services.submission.claim``
        :param actor_id: defaults to the actor bound for the current update
        :param payload: any structure; stored as JSON with a ``_meta`` call site
        """
        body = to_json(payload) if payload is not None else {}
        if not isinstance(body, dict):
            body = {"value": body}
        body["_meta"] = _call_site()
        if actor_id is None:
            actor_id = self.current_actor()

        # DataBase is resolved per call so tests can swap the engine
        entry = await DataBase().create_audit_log(
            AuditLogCreate(action=action, actor_id=actor_id, payload=body)
        )
        logger.info("AUDIT %s actor=%s submission=%s", action, actor_id or "-", body.get("submission", "-"))
        return entry

    async def list_entries(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
        actor_id: uuid.UUID | None = None,
        action: str | None = None,
    ) -> tuple[list[AuditLogRead], int]:
        return await DataBase().list_audit_logs(limit=limit, offset=offset, actor_id=actor_id, action=action)

    def bind_actor(self, actor_id: Optional[uuid.UUID]) -> Token:
        return self._actor.set(actor_id)

    def unbind_actor(self, token: Token) -> None:
        try:
            self._actor.reset(token)
        except ValueError:
            # token from another context
            self._actor.set(None)

    def current_actor(self) -> Optional[uuid.UUID]:
        return self._actor.get()


audit_logger = AuditLogService()


def _call_site() -> dict[str, Any]:
    here = Path(__file__).name
    frame = inspect.currentframe()
    while frame is not None:
        path = Path(frame.f_code.co_filename)
        if path.name != here:
            return {"location": f"{path.name}:{frame.f_lineno}", "function": frame.f_code.co_name}
        frame = frame.f_back
    return {}


def _bound_arguments(signature: inspect.Signature, args: tuple, kwargs: dict) -> dict[str, Any]:
    try:
        bound = signature.bind(*args, **kwargs)
    except TypeError:
        return dict(kwargs)
    bound.apply_defaults()
    arguments = dict(bound.arguments)
    arguments.pop("self", None)
    return arguments


def _pick_actor(arguments: dict[str, Any], actor_fields: Iterable[str]) -> UserRead | None:
    for field in actor_fields:
        candidate = arguments.get(field)
        if isinstance(candidate, UserRead):
            return candidate
    return None


def _pick_submission(arguments: dict[str, Any], result: Any) -> str | None:
    for name in SUBMISSION_ARGS:
        value = arguments.get(name)
        if isinstance(value, uuid.UUID):
            return str(value)
        if getattr(value, "id", None) is not None:
            return str(value.id)
    if isinstance(result, SubmissionRead):
        return str(result.id)
    submission_id = getattr(result, "submission_id", None)
    return str(submission_id) if submission_id is not None else None


def audited(
    fn: Callable[..., Awaitable[Any]],
    action: str,
    actor_fields: Iterable[str],
) -> Callable[..., Awaitable[Any]]:
    """Wrap a service coroutine so each call, successful or not, leaves an audit entry."""
    if getattr(fn, "__audit_wrapped__", False):
        return fn

    signature = inspect.signature(fn)
    actor_fields = tuple(actor_fields)

    @wraps(fn)
    async def wrapper(*args, **kwargs):
        arguments = _bound_arguments(signature, args, kwargs)
        actor = _pick_actor(arguments, actor_fields)
        data: dict[str, Any] = {
            "args": [to_json(a) for a in args[1:]],
            "kwargs": to_json(kwargs),
        }
        payload: dict[str, Any] = {"data": data}
        if actor is not None:
            payload["actor"] = {"id": str(actor.id), "role": str(actor.role), "name": actor.name}

        try:
            result = await fn(*args, **kwargs)
        except Exception as exc:
            data["error"] = repr(exc)
            payload["submission"] = _pick_submission(arguments, None)
            await audit_logger.log(action=f"{action}.error", actor_id=actor.id if actor else None, payload=payload)
            raise

        data["result"] = to_json(result)
        payload["submission"] = _pick_submission(arguments, result)
        await audit_logger.log(action=action, actor_id=actor.id if actor else None, payload=payload)
        return result

    wrapper.__audit_wrapped__ = True  # type: ignore[attr-defined]
    return wrapper


def instrument_service_class(
    cls,
    *,
    prefix: str | None = None,
    exclude: Iterable[str] | None = None,
    actor_fields: Iterable[str] = ("actor", "coach", "user"),
) -> None:
    """Audit every public coroutine method of ``cls`` except reads."""
    action_prefix = prefix or cls.__name__
    excluded = set(exclude or ())

    for name, attr in list(cls.__dict__.items()):
        if name.startswith("_") or name in excluded or name.startswith(READ_PREFIXES):
            continue
        if inspect.iscoroutinefunction(attr):
            setattr(cls, name, audited(attr, f"{action_prefix}.{name}", actor_fields))


__all__ = [
    "AuditLogService",
    "audit_logger",
    "audited",
    "instrument_service_class",
    "to_json",
]
