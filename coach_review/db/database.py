# db/database.py
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional, ClassVar, Self, Any, List, Sequence

from sqlalchemy import select, func, update, delete, case, or_, and_
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.exc import IntegrityError

from coach_review.config import Settings
from coach_review.errors import AlreadyClaimed, InvalidTransition, NotFound, PermissionDenied, ValidationFailed
from coach_review.db.models._base import Base
from coach_review.db.models.user import User
from coach_review.db.models.submission import Submission
from coach_review.db.models.review import Review
from coach_review.db.models.comment import Comment
from coach_review.db.models.audit_log import AuditLog
from coach_review.db.enums import SubmissionStatus, ReviewStatus, QueueSort, CommentAuthorRole, STATUS_ORDER
from coach_review.db.schemas.user import UserCreate, UserRead, UserUpdate
from coach_review.db.schemas.submission import (
    SubmissionCreate, SubmissionRead, SubmissionUpdate, SubmissionFilter, QueueScope,
)
from coach_review.db.schemas.review import ReviewRead, ReviewDraft
from coach_review.db.schemas.comment import CommentCreate, CommentRead
from coach_review.db.schemas.audit_log import AuditLogCreate, AuditLogRead
from coach_review.utils.clock import minutes_between, utc_now
from coach_review.utils.sentinels import provided_fields


class DataBase():
    """
    Async SQLAlchemy database singleton.
    Usage:
        db = DataBase()  # same instance everywhere
        async with db.session() as s:
            ...

    Every write that coordinates several principals (claim, status
    transitions, review publishing, comment cascade) is a single conditional
    statement or a single transaction; nothing here retries.
    """
    _instance: ClassVar[Optional["DataBase"]] = None

    def __new__(cls, *args: Any, **kwargs: Any) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)

        return cls._instance

    def __init__(self, echo: bool = False) -> None:
        if getattr(self, "_initialized", False):
            return

        url = Settings().database_url
        self._engine: AsyncEngine = create_async_engine(url, echo=echo, pool_pre_ping=True)
        self._sessionmaker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self._engine,
            expire_on_commit=False,
            autoflush=False,
        )

        self._initialized = True

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Provides an AsyncSession with safe commit/rollback semantics.
        """
        session: AsyncSession = self._sessionmaker()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # --- schema management helpers ---

    async def create_all(self) -> None:
        """
        Create tables based on Base metadata. Use only in dev/tests; prefer migrations in prod.
        """
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    # ---------- Users ----------

    async def create_user(self, data: UserCreate) -> UserRead:
        """
        Create a user and return its snapshot.
        On unique-constraint violation, re-raises IntegrityError for the caller to handle.
        """
        tg_username = data.tg_username
        if tg_username and tg_username.startswith("@"):
            tg_username = tg_username[1:]

        user = User(
            tg_id=data.tg_id,
            tg_username=tg_username,
            display_name=data.display_name,
            email=str(data.email) if data.email is not None else None,
            photo_url=data.photo_url,
            role=data.role,
            team_id=data.team_id,
            coach_id=data.coach_id,
            preferred_language=data.preferred_language,
            ui_mode=data.ui_mode,
        )

        async with self.session() as s:
            s.add(user)
            await s.flush()
            await s.refresh(user)

        return UserRead.model_validate(user)

    async def get_user(self, uid: Optional[uuid.UUID] = None, tg_id: Optional[int] = None, tg_username: Optional[str] = None) -> Optional[UserRead]:
        """
        Fetch a user by the first identifier that matches (priority: id -> tg_id -> tg_username).
        Returns None when nothing matches; never raises on missing input.
        """
        user = await self.get_user_by_id(uid)
        if user:
            return user

        user = await self.get_user_by_tg_id(tg_id)
        if user:
            return user

        return await self.get_user_by_tg_username(tg_username)

    async def get_user_by_id(self, uid: Optional[uuid.UUID] = None) -> Optional[UserRead]:
        if uid is None:
            return None

        async with self.session() as s:
            user_row = await s.get(User, uid)

        return UserRead.model_validate(user_row) if user_row is not None else None

    async def get_user_by_tg_id(self, tg_id: Optional[int] = None) -> Optional[UserRead]:
        if tg_id is None:
            return None

        async with self.session() as s:
            result = await s.execute(select(User).where(User.tg_id == tg_id))
            user_row = result.scalar_one_or_none()

        return UserRead.model_validate(user_row) if user_row is not None else None

    async def get_user_by_tg_username(self, tg_username: Optional[str] = None) -> Optional[UserRead]:
        if not tg_username:
            return None

        # normalize optional leading '@'
        if tg_username.startswith("@"):
            tg_username = tg_username[1:]

        async with self.session() as s:
            result = await s.execute(select(User).where(User.tg_username == tg_username))
            user_row = result.scalars().first()

        return UserRead.model_validate(user_row) if user_row is not None else None

    async def update_user(self, data: UserUpdate) -> UserRead:
        """
        Partially update a user by id.
        Only fields explicitly provided (not MISSING) are written; an explicit None clears the column.

        Raises:
            NotFound: if the user does not exist.
            IntegrityError: on unique constraint violation (e.g., tg_id).
        """
        changes = provided_fields(data)
        changes.pop("id", None)

        async with self.session() as s:
            db_user = await s.get(User, data.id)
            if db_user is None:
                raise NotFound("User", data.id)

            for field, value in changes.items():
                if field == "tg_username" and value:
                    value = value[1:] if value.startswith("@") else value
                if field == "email" and value is not None:
                    value = str(value)
                setattr(db_user, field, value)

            try:
                await s.flush()
                await s.refresh(db_user)
            except IntegrityError:
                # rollback is handled by the context manager
                raise

        return UserRead.model_validate(db_user)

    # ---------- Submission: reads ----------

    async def get_submission_by_id(self, sub_id: uuid.UUID) -> Optional[SubmissionRead]:
        if not sub_id:
            return None
        async with self.session() as s:
            db_obj = await s.get(Submission, sub_id)
            return SubmissionRead.model_validate(db_obj) if db_obj else None

    @staticmethod
    def _order_clauses(order: QueueSort) -> list[Any]:
        if order == QueueSort.OLDEST:
            return [Submission.created_at.asc(), Submission.id.asc()]
        if order == QueueSort.DEADLINE:
            return [Submission.sla_deadline.asc().nulls_last(), Submission.created_at.asc(), Submission.id.asc()]
        return [Submission.created_at.desc(), Submission.id.desc()]

    async def list_submissions(self, flt: SubmissionFilter) -> list[SubmissionRead]:
        """
        One-shot filtered and ordered listing.
        """
        stmt = select(Submission)
        if flt.statuses:
            stmt = stmt.where(Submission.status.in_(list(flt.statuses)))
        if flt.team_id is not None:
            stmt = stmt.where(Submission.team_id == flt.team_id)
        if flt.coach_id is not None:
            stmt = stmt.where(Submission.coach_id == flt.coach_id)
        if flt.athlete_id is not None:
            stmt = stmt.where(Submission.athlete_id == flt.athlete_id)
        if flt.claimed_by is not None:
            stmt = stmt.where(Submission.claimed_by == flt.claimed_by)
        stmt = stmt.order_by(*self._order_clauses(flt.order))
        if flt.limit:
            stmt = stmt.limit(flt.limit)

        async with self.session() as s:
            rows = (await s.execute(stmt)).scalars().all()
        return [SubmissionRead.model_validate(r) for r in rows]

    async def list_submissions_in_scope(
        self,
        scope: QueueScope,
        statuses: Sequence[SubmissionStatus],
        order: QueueSort = QueueSort.DEADLINE,
    ) -> list[SubmissionRead]:
        """
        Queue listing. A coach scope covers what is routed to or claimed by the coach,
        plus the coach's team. The open pool adds submissions routed to nobody.
        """
        conditions = []
        if scope.everyone:
            conditions.append(Submission.id.is_not(None))
        if scope.coach_id is not None:
            conditions.append(Submission.coach_id == scope.coach_id)
            conditions.append(Submission.claimed_by == scope.coach_id)
        if scope.team_id is not None:
            conditions.append(Submission.team_id == scope.team_id)
        if scope.open_pool:
            conditions.append(and_(Submission.coach_id.is_(None), Submission.team_id.is_(None)))
        if not conditions:
            return []

        stmt = (
            select(Submission)
            .where(or_(*conditions))
            .where(Submission.status.in_(list(statuses)))
            .order_by(*self._order_clauses(order))
        )
        async with self.session() as s:
            rows = (await s.execute(stmt)).scalars().all()
        return [SubmissionRead.model_validate(r) for r in rows]

    # ---------- Submission: writes ----------

    async def create_submission(
        self,
        athlete: UserRead,
        data: SubmissionCreate,
        *,
        sla_deadline: Optional[datetime],
    ) -> SubmissionRead:
        """
        Insert the metadata record of a new submission (phase one of the two-phase create).
        The row starts in ``uploading``; media is attached later.
        """
        async with self.session() as s:
            db_obj = Submission(
                athlete_id=athlete.id,
                athlete_name=athlete.name,
                athlete_photo_url=athlete.photo_url,
                team_id=athlete.team_id,
                coach_id=athlete.coach_id,
                skill_name=data.skill_name,
                athlete_context=data.athlete_context,
                athlete_goals=data.athlete_goals,
                specific_questions=data.specific_questions,
                video_file_name=data.video_file_name,
                video_file_size=data.video_file_size,
                video_duration=data.video_duration,
                status=SubmissionStatus.UPLOADING,
                sla_deadline=sla_deadline,
                comment_count=0,
            )
            s.add(db_obj)
            await s.flush()
            await s.refresh(db_obj)
            return SubmissionRead.model_validate(db_obj)

    async def update_submission(self, data: SubmissionUpdate) -> SubmissionRead:
        """
        Partial update of the media fields and, optionally, the hand-over to coaches.

        The only status a plain update writes is ``uploading`` or ``awaiting_coach``;
        claiming, reviewing and completing have their own conditional writes. The
        status change is one conditional UPDATE restricted to rows whose current
        status is not to the right of the target, so a row never moves backwards.

        Raises:
            NotFound: no such submission.
            InvalidTransition: the target is a workflow status or the row is already past it.
        """
        changes = provided_fields(data)
        changes.pop("id", None)

        stmt = update(Submission).where(Submission.id == data.id)
        target = changes.get("status")
        if target is not None:
            if target.rank > SubmissionStatus.AWAITING_COACH.rank:
                raise InvalidTransition(None, target)
            allowed_from = [st for st in STATUS_ORDER if st.precedes_or_equals(target)]
            stmt = stmt.where(Submission.status.in_(allowed_from))

        changes["updated_at"] = utc_now()
        stmt = stmt.values(**changes).execution_options(synchronize_session=False)

        async with self.session() as s:
            result = await s.execute(stmt)
            db_obj = await s.get(Submission, data.id, populate_existing=True)
            if db_obj is None:
                raise NotFound("Submission", data.id)
            if result.rowcount == 0:
                raise InvalidTransition(db_obj.status, target)
            return SubmissionRead.model_validate(db_obj)

    async def claim_submission(
        self,
        submission_id: uuid.UUID,
        coach_id: uuid.UUID,
        coach_name: str,
    ) -> SubmissionRead:
        """
        Compare-and-swap claim: assign the coach only while the row is still
        ``awaiting_coach`` with no claimer. Exactly one of any number of
        concurrent callers can match the WHERE clause.

        Raises:
            NotFound: no such submission.
            AlreadyClaimed: the row was claimed (by anyone) or left the awaiting state.
        """
        now = utc_now()
        stmt = (
            update(Submission)
            .where(
                Submission.id == submission_id,
                Submission.status == SubmissionStatus.AWAITING_COACH,
                Submission.claimed_by.is_(None),
            )
            .values(
                claimed_by=coach_id,
                claimed_by_name=coach_name,
                claimed_at=now,
                status=SubmissionStatus.CLAIMED,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        async with self.session() as s:
            result = await s.execute(stmt)
            db_obj = await s.get(Submission, submission_id, populate_existing=True)
            if db_obj is None:
                raise NotFound("Submission", submission_id)
            if result.rowcount == 0:
                raise AlreadyClaimed(submission_id, db_obj.claimed_by, db_obj.claimed_by_name)
            return SubmissionRead.model_validate(db_obj)

    # ---------- Reviews ----------

    async def get_review_by_id(self, review_id: uuid.UUID) -> Optional[ReviewRead]:
        async with self.session() as s:
            db_obj = await s.get(Review, review_id)
            return ReviewRead.model_validate(db_obj) if db_obj else None

    async def get_review_by_submission(self, submission_id: uuid.UUID) -> Optional[ReviewRead]:
        async with self.session() as s:
            res = await s.execute(select(Review).where(Review.submission_id == submission_id))
            db_obj = res.scalar_one_or_none()
            return ReviewRead.model_validate(db_obj) if db_obj else None

    async def start_review(
        self,
        submission_id: uuid.UUID,
        coach_id: uuid.UUID,
        coach_name: str,
    ) -> tuple[SubmissionRead, ReviewRead]:
        """
        Move a claimed submission to ``in_review`` and open its draft review, in one
        transaction. Re-entering a review already in progress returns the existing draft.
        """
        stmt = (
            update(Submission)
            .where(
                Submission.id == submission_id,
                Submission.status == SubmissionStatus.CLAIMED,
                Submission.claimed_by == coach_id,
            )
            .values(status=SubmissionStatus.IN_REVIEW, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )

        async with self.session() as s:
            result = await s.execute(stmt)
            sub = await s.get(Submission, submission_id, populate_existing=True)
            if sub is None:
                raise NotFound("Submission", submission_id)
            if sub.claimed_by != coach_id:
                raise PermissionDenied("Only the claiming coach can review this submission")
            if result.rowcount == 0 and sub.status != SubmissionStatus.IN_REVIEW:
                raise InvalidTransition(sub.status, SubmissionStatus.IN_REVIEW)

            res = await s.execute(select(Review).where(Review.submission_id == submission_id))
            review = res.scalar_one_or_none()
            if review is None:
                review = Review(
                    submission_id=submission_id,
                    coach_id=coach_id,
                    coach_name=coach_name,
                    status=ReviewStatus.DRAFT,
                    strengths=[],
                    areas_for_improvement=[],
                )
                s.add(review)
                await s.flush()
                await s.refresh(review)

            return SubmissionRead.model_validate(sub), ReviewRead.model_validate(review)

    async def update_review_draft(self, review_id: uuid.UUID, coach_id: uuid.UUID, draft: ReviewDraft) -> ReviewRead:
        async with self.session() as s:
            review = await s.get(Review, review_id)
            if review is None:
                raise NotFound("Review", review_id)
            if review.coach_id != coach_id:
                raise PermissionDenied("Only the reviewing coach can edit this review")
            if review.status == ReviewStatus.PUBLISHED:
                raise ValidationFailed("Published reviews cannot be edited", field="status")

            for field, value in draft.model_dump(exclude_none=True).items():
                setattr(review, field, value)
            review.updated_at = utc_now()

            await s.flush()
            await s.refresh(review)
            return ReviewRead.model_validate(review)

    async def publish_review(self, review_id: uuid.UUID, coach_id: uuid.UUID) -> tuple[ReviewRead, SubmissionRead]:
        """
        Publish a draft and complete its submission in one transaction.

        Raises:
            NotFound, PermissionDenied,
            ValidationFailed: feedback or next steps missing, or already published,
            InvalidTransition: the submission is no longer claimed / in review.
        """
        async with self.session() as s:
            review = await s.get(Review, review_id)
            if review is None:
                raise NotFound("Review", review_id)
            if review.coach_id != coach_id:
                raise PermissionDenied("Only the reviewing coach can publish this review")
            if review.status == ReviewStatus.PUBLISHED:
                raise ValidationFailed("Review is already published", field="status")
            if not (review.overall_feedback or "").strip():
                raise ValidationFailed("Overall feedback is required to publish", field="overall_feedback")
            if not (review.next_steps or "").strip():
                raise ValidationFailed("Next steps are required to publish", field="next_steps")

            sub = await s.get(Submission, review.submission_id)
            if sub is None:
                raise NotFound("Submission", review.submission_id)

            now = utc_now()
            turnaround = minutes_between(sub.created_at, now)
            result = await s.execute(
                update(Submission)
                .where(
                    Submission.id == review.submission_id,
                    Submission.status.in_([SubmissionStatus.CLAIMED, SubmissionStatus.IN_REVIEW]),
                    Submission.claimed_by == coach_id,
                )
                .values(
                    status=SubmissionStatus.COMPLETE,
                    review_id=review.id,
                    reviewed_at=now,
                    turnaround_minutes=turnaround,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise InvalidTransition(sub.status, SubmissionStatus.COMPLETE)

            review.status = ReviewStatus.PUBLISHED
            review.published_at = now
            review.updated_at = now
            await s.flush()
            await s.refresh(review)
            sub = await s.get(Submission, review.submission_id, populate_existing=True)
            return ReviewRead.model_validate(review), SubmissionRead.model_validate(sub)

    # ---------- Comments ----------

    async def get_comment_by_id(self, comment_id: uuid.UUID) -> Optional[CommentRead]:
        async with self.session() as s:
            db_obj = await s.get(Comment, comment_id)
            return CommentRead.model_validate(db_obj) if db_obj else None

    async def list_comments(self, submission_id: uuid.UUID) -> list[CommentRead]:
        """All comments of a submission, oldest first."""
        async with self.session() as s:
            res = await s.execute(
                select(Comment)
                .where(Comment.submission_id == submission_id)
                .order_by(Comment.created_at.asc(), Comment.id.asc())
            )
            return [CommentRead.model_validate(r) for r in res.scalars().all()]

    async def create_comment(
        self,
        data: CommentCreate,
        *,
        author_id: uuid.UUID,
        author_name: str,
        author_role: CommentAuthorRole,
    ) -> CommentRead:
        """
        Insert a comment and bump the submission's comment counter in the same transaction.
        A reply to a reply is attached to the thread's top-level comment.
        """
        async with self.session() as s:
            sub = await s.get(Submission, data.submission_id)
            if sub is None:
                raise NotFound("Submission", data.submission_id)

            parent_id = data.parent_id
            if parent_id is not None:
                parent = await s.get(Comment, parent_id)
                if parent is None or parent.submission_id != data.submission_id:
                    raise NotFound("Comment", parent_id)
                parent_id = parent.parent_id or parent.id

            comment = Comment(
                submission_id=data.submission_id,
                parent_id=parent_id,
                author_id=author_id,
                author_name=author_name,
                author_role=author_role,
                content=data.content,
                video_timestamp=data.video_timestamp,
                edited=False,
            )
            s.add(comment)
            await s.execute(
                update(Submission)
                .where(Submission.id == data.submission_id)
                .values(comment_count=Submission.comment_count + 1, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            await s.flush()
            await s.refresh(comment)
            return CommentRead.model_validate(comment)

    async def update_comment_content(self, comment_id: uuid.UUID, content: str) -> CommentRead:
        async with self.session() as s:
            comment = await s.get(Comment, comment_id)
            if comment is None:
                raise NotFound("Comment", comment_id)
            comment.content = content
            comment.edited = True
            comment.edited_at = utc_now()
            await s.flush()
            await s.refresh(comment)
            return CommentRead.model_validate(comment)

    async def delete_comment(self, comment_id: uuid.UUID) -> List[uuid.UUID]:
        """
        Delete a comment. A top-level comment takes its replies with it; all rows go
        in one transaction together with the counter decrement.
        Returns the ids of every deleted row.
        """
        async with self.session() as s:
            comment = await s.get(Comment, comment_id)
            if comment is None:
                raise NotFound("Comment", comment_id)

            deleted: List[uuid.UUID] = [comment.id]
            if comment.parent_id is None:
                res = await s.execute(select(Comment.id).where(Comment.parent_id == comment.id))
                reply_ids = list(res.scalars().all())
                if reply_ids:
                    await s.execute(
                        delete(Comment)
                        .where(Comment.id.in_(reply_ids))
                        .execution_options(synchronize_session=False)
                    )
                deleted.extend(reply_ids)

            submission_id = comment.submission_id
            await s.delete(comment)

            n = len(deleted)
            await s.execute(
                update(Submission)
                .where(Submission.id == submission_id)
                .values(
                    comment_count=case(
                        (Submission.comment_count - n < 0, 0),
                        else_=Submission.comment_count - n,
                    ),
                    updated_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            await s.flush()
            return deleted

    # ---------------------------------
    # Audit log helpers
    # ---------------------------------

    async def create_audit_log(self, payload: AuditLogCreate) -> AuditLogRead:
        """Persist a new audit log entry."""
        async with self.session() as s:
            record = AuditLog(
                actor_id=payload.actor_id,
                action=payload.action,
                payload=dict(payload.payload or {}),
            )
            s.add(record)
            await s.flush()
            await s.refresh(record)
            return AuditLogRead.model_validate(record)

    async def list_audit_logs(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
        actor_id: uuid.UUID | None = None,
        action: str | None = None,
    ) -> tuple[list[AuditLogRead], int]:
        """Return paginated audit log entries filtered by actor/action."""
        limit = max(0, int(limit))
        offset = max(0, int(offset))

        async with self.session() as s:
            stmt = select(AuditLog).order_by(AuditLog.created_at.desc())
            count_stmt = select(func.count(AuditLog.id))
            if actor_id:
                stmt = stmt.where(AuditLog.actor_id == actor_id)
                count_stmt = count_stmt.where(AuditLog.actor_id == actor_id)
            if action:
                stmt = stmt.where(AuditLog.action == action)
                count_stmt = count_stmt.where(AuditLog.action == action)

            if limit:
                stmt = stmt.limit(limit)
            if offset:
                stmt = stmt.offset(offset)

            rows = (await s.execute(stmt)).scalars().all()
            total = int((await s.execute(count_stmt)).scalar_one())

        return [AuditLogRead.model_validate(row) for row in rows], total
