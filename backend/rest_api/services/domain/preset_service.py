"""
Menu Preset Domain Service.

A preset is a saved selection of categories and items. Applying it makes
exactly that selection available on the live menu. Auto-apply presets
follow their schedule:
- one_time: absolute [scheduled_start, scheduled_end)
- daily: [daily_start_time, daily_end_time) every day, branch local time

When a window closes the preset is un-applied and the live menu is left
as it is.
"""

from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from rest_api.models import Branch, MenuCategory, MenuItem, MenuPreset
from rest_api.services.audit import log_change, serialize_model
from rest_api.services.crud.repository import BranchRepository, BranchScope, resolve_branch
from rest_api.services.jobs import JobQueue, MenuSyncPayload
from rest_api.services.permissions import Operations, Principal, authorize
from shared.config.constants import AuditAction, JobTypes, ScheduleType
from shared.config.logging import get_logger
from shared.infrastructure.db import safe_commit
from shared.utils.clock import ensure_utc, to_local, utcnow
from shared.utils.exceptions import (
    ConflictError,
    NotFoundError,
    OperationFailedError,
    PresetNotFoundError,
    ValidationError,
)
from shared.utils.money import round_money
from shared.utils.schemas import PresetCreateRequest, PresetUpdateRequest, ScheduledPresetReport
from shared.utils.validators import parse_hhmm

logger = get_logger(__name__)

SCHEDULE_FIELDS = (
    "schedule_type",
    "scheduled_start",
    "scheduled_end",
    "daily_start_time",
    "daily_end_time",
)


def validate_schedule(
    schedule_type: Optional[str],
    scheduled_start: Optional[datetime],
    scheduled_end: Optional[datetime],
    daily_start_time: Optional[str],
    daily_end_time: Optional[str],
) -> None:
    """
    Raises:
        ValidationError: start not before end, or malformed daily times.
    """
    if schedule_type is None:
        return
    if schedule_type not in ScheduleType.ALL:
        raise ValidationError(f"schedule_type must be one of: {', '.join(ScheduleType.ALL)}")

    if schedule_type == ScheduleType.ONE_TIME:
        if scheduled_start and scheduled_end and ensure_utc(scheduled_start) >= ensure_utc(scheduled_end):
            raise ValidationError("scheduled_start must be before scheduled_end")
        return

    if not daily_start_time or not daily_end_time:
        raise ValidationError("Daily presets require daily_start_time and daily_end_time")
    start = parse_hhmm(daily_start_time, "daily_start_time")
    end = parse_hhmm(daily_end_time, "daily_end_time")
    if start >= end:
        raise ValidationError("daily_start_time must be before daily_end_time")


def window_contains(preset: MenuPreset, now: datetime, tz_name: str) -> bool:
    """Whether the preset's schedule window includes `now`."""
    if preset.schedule_type == ScheduleType.DAILY:
        if not preset.daily_start_time or not preset.daily_end_time:
            return False
        local_time = to_local(now, tz_name).time()
        start = parse_hhmm(preset.daily_start_time, "daily_start_time")
        end = parse_hhmm(preset.daily_end_time, "daily_end_time")
        return start <= local_time < end

    start = ensure_utc(preset.scheduled_start)
    end = ensure_utc(preset.scheduled_end)
    if start is None and end is None:
        return False
    now = ensure_utc(now)
    return (start is None or start <= now) and (end is None or now < end)


class PresetService:
    """Domain service for menu presets."""

    def __init__(self, db: Session, jobs: JobQueue):
        self._db = db
        self._jobs = jobs
        self._presets = BranchRepository(MenuPreset, db)

    # =========================================================================
    # Queries
    # =========================================================================

    def _load_preset(self, principal: Principal, preset_id: int, for_update: bool = False) -> MenuPreset:
        preset = self._presets.find_in_scope(
            preset_id, BranchScope.for_principal(principal), for_update=for_update
        )
        if preset is None:
            raise PresetNotFoundError(preset_id, chain_id=principal.chain_id)
        return preset

    def list_presets(self, principal: Principal, branch_id: Optional[int] = None) -> Sequence[MenuPreset]:
        branch = resolve_branch(self._db, principal, branch_id)
        authorize(principal, Operations.PRESETS_READ, branch_id=branch.id)
        return self._presets.find_by_branch(
            branch.id, BranchScope.for_principal(principal), order_by=MenuPreset.name
        )

    def get_preset(self, principal: Principal, preset_id: int) -> MenuPreset:
        authorize(principal, Operations.PRESETS_READ)
        return self._load_preset(principal, preset_id)

    # =========================================================================
    # Create / update / delete
    # =========================================================================

    def _ensure_unique_name(self, branch_id: int, name: str, exclude_id: Optional[int] = None) -> None:
        query = select(MenuPreset.id).where(
            MenuPreset.branch_id == branch_id,
            MenuPreset.name == name,
            MenuPreset.is_active.is_(True),
        )
        if exclude_id is not None:
            query = query.where(MenuPreset.id != exclude_id)
        if self._db.scalar(query) is not None:
            raise ConflictError(f"A menu preset named '{name}' already exists", branch_id=branch_id)

    def _check_references(self, branch: Branch, category_ids: list[int], item_ids: list[int]) -> None:
        if category_ids:
            found = set(self._db.scalars(
                select(MenuCategory.id).where(
                    MenuCategory.id.in_(category_ids),
                    MenuCategory.branch_id == branch.id,
                    MenuCategory.is_active.is_(True),
                )
            ))
            missing = sorted(set(category_ids) - found)
            if missing:
                raise ValidationError(f"Unknown categories: {', '.join(str(i) for i in missing)}")
        if item_ids:
            found = set(self._db.scalars(
                select(MenuItem.id).where(
                    MenuItem.id.in_(item_ids),
                    MenuItem.branch_id == branch.id,
                    MenuItem.is_active.is_(True),
                )
            ))
            missing = sorted(set(item_ids) - found)
            if missing:
                raise ValidationError(f"Unknown menu items: {', '.join(str(i) for i in missing)}")

    def capture_current_menu(self, branch: Branch) -> tuple[dict[str, Any], list[int], list[int]]:
        """Snapshot of what is available on the live menu right now."""
        categories = self._db.scalars(
            select(MenuCategory)
            .where(
                MenuCategory.branch_id == branch.id,
                MenuCategory.is_active.is_(True),
                MenuCategory.is_available.is_(True),
            )
            .order_by(MenuCategory.display_order, MenuCategory.id)
        ).all()
        items = self._db.scalars(
            select(MenuItem)
            .where(
                MenuItem.branch_id == branch.id,
                MenuItem.is_active.is_(True),
                MenuItem.is_available.is_(True),
            )
            .order_by(MenuItem.id)
        ).all()

        menu_data = {
            "categories": [
                {"id": c.id, "name": c.name, "display_order": c.display_order} for c in categories
            ],
            "items": [
                {"id": i.id, "name": i.name, "category_id": i.category_id, "price": str(round_money(i.price))}
                for i in items
            ],
        }
        return menu_data, [c.id for c in categories], [i.id for i in items]

    def create_preset(self, principal: Principal, request: PresetCreateRequest) -> MenuPreset:
        """
        Save a preset from explicit references, or capture the live menu
        when no references are given.
        """
        branch = resolve_branch(self._db, principal, request.branch_id)
        authorize(principal, Operations.PRESETS_WRITE, branch_id=branch.id)

        name = request.name.strip()
        if not name:
            raise ValidationError("Preset name is required")
        self._ensure_unique_name(branch.id, name)
        validate_schedule(
            request.schedule_type,
            request.scheduled_start,
            request.scheduled_end,
            request.daily_start_time,
            request.daily_end_time,
        )

        explicit = (
            request.menu_data is not None
            or request.selected_category_ids is not None
            or request.selected_item_ids is not None
        )
        if explicit:
            category_ids = list(dict.fromkeys(request.selected_category_ids or []))
            item_ids = list(dict.fromkeys(request.selected_item_ids or []))
            self._check_references(branch, category_ids, item_ids)
            menu_data = request.menu_data or {}
        else:
            menu_data, category_ids, item_ids = self.capture_current_menu(branch)

        is_daily = request.schedule_type == ScheduleType.DAILY
        preset = MenuPreset(
            chain_id=branch.chain_id,
            branch_id=branch.id,
            name=name,
            description=request.description,
            menu_data=menu_data,
            selected_category_ids=category_ids,
            selected_item_ids=item_ids,
            schedule_type=request.schedule_type,
            scheduled_start=None if is_daily else request.scheduled_start,
            scheduled_end=None if is_daily else request.scheduled_end,
            daily_start_time=request.daily_start_time if is_daily else None,
            daily_end_time=request.daily_end_time if is_daily else None,
            auto_apply=bool(request.auto_apply),
            is_applied=False,
        )
        preset.set_created_by(principal.user_id, principal.email)
        self._db.add(preset)

        try:
            self._db.flush()
            log_change(
                self._db,
                chain_id=branch.chain_id,
                branch_id=branch.id,
                user_id=principal.user_id,
                user_email=principal.email,
                entity_type="menu_preset",
                entity_id=preset.id,
                action=AuditAction.CREATE,
                new_values=serialize_model(preset, exclude=["menu_data"]),
            )
            safe_commit(self._db)
        except IntegrityError as e:
            self._db.rollback()
            raise ConflictError(f"A menu preset named '{name}' already exists", branch_id=branch.id) from e
        except SQLAlchemyError as e:
            self._db.rollback()
            raise OperationFailedError("create the menu preset", branch_id=branch.id) from e

        self._db.refresh(preset)
        logger.info(
            "Menu preset created",
            preset_id=preset.id,
            branch_id=branch.id,
            captured=not explicit,
            items=len(item_ids),
        )
        return preset

    def update_preset(self, principal: Principal, preset_id: int, request: PresetUpdateRequest) -> MenuPreset:
        authorize(principal, Operations.PRESETS_WRITE)
        preset = self._load_preset(principal, preset_id, for_update=True)
        authorize(principal, Operations.PRESETS_WRITE, branch_id=preset.branch_id)
        changes = request.model_dump(exclude_unset=True)

        if "name" in changes:
            name = (changes["name"] or "").strip()
            if not name:
                raise ValidationError("Preset name is required")
            self._ensure_unique_name(preset.branch_id, name, exclude_id=preset.id)
            changes["name"] = name

        merged = {field: changes.get(field, getattr(preset, field)) for field in SCHEDULE_FIELDS}
        validate_schedule(**merged)

        if "selected_category_ids" in changes or "selected_item_ids" in changes:
            branch = self._db.get(Branch, preset.branch_id)
            self._check_references(
                branch,
                changes.get("selected_category_ids") or [],
                changes.get("selected_item_ids") or [],
            )

        old_values = serialize_model(preset, exclude=["menu_data"])
        for field, value in changes.items():
            if field in ("selected_category_ids", "selected_item_ids"):
                value = list(dict.fromkeys(value or []))
            elif field == "menu_data":
                value = value or {}
            elif field == "auto_apply":
                value = bool(value)
            setattr(preset, field, value)
        preset.set_updated_by(principal.user_id, principal.email)

        log_change(
            self._db,
            chain_id=preset.chain_id,
            branch_id=preset.branch_id,
            user_id=principal.user_id,
            user_email=principal.email,
            entity_type="menu_preset",
            entity_id=preset.id,
            action=AuditAction.UPDATE,
            old_values=old_values,
            new_values=serialize_model(preset, exclude=["menu_data"]),
        )
        try:
            safe_commit(self._db)
        except IntegrityError as e:
            raise ConflictError("A menu preset with this name already exists", preset_id=preset_id) from e
        except SQLAlchemyError as e:
            raise OperationFailedError("update the menu preset", preset_id=preset_id) from e

        self._db.refresh(preset)
        return preset

    def delete_preset(self, principal: Principal, preset_id: int) -> None:
        """Soft delete; the applied preset must be deactivated first."""
        authorize(principal, Operations.PRESETS_WRITE)
        preset = self._load_preset(principal, preset_id, for_update=True)
        authorize(principal, Operations.PRESETS_WRITE, branch_id=preset.branch_id)
        if preset.is_applied:
            self._db.rollback()
            raise ConflictError("Deactivate the preset before deleting it", preset_id=preset_id)

        preset.soft_delete(principal.user_id, principal.email)
        # Frees the name for reuse under the unique (branch, name) constraint
        preset.name = f"{preset.name} [deleted {preset.id}]"
        log_change(
            self._db,
            chain_id=preset.chain_id,
            branch_id=preset.branch_id,
            user_id=principal.user_id,
            user_email=principal.email,
            entity_type="menu_preset",
            entity_id=preset.id,
            action=AuditAction.DELETE,
        )
        try:
            safe_commit(self._db)
        except SQLAlchemyError as e:
            raise OperationFailedError("delete the menu preset", preset_id=preset_id) from e
        logger.info("Menu preset deleted", preset_id=preset_id, user_id=principal.user_id)

    # =========================================================================
    # Activation
    # =========================================================================

    def _activate(self, preset: MenuPreset, now: datetime) -> None:
        """Mark applied, un-apply the rest, and make the live menu match the selection."""
        others = self._db.scalars(
            select(MenuPreset).where(
                MenuPreset.branch_id == preset.branch_id,
                MenuPreset.id != preset.id,
                MenuPreset.is_applied.is_(True),
            )
        ).all()
        for other in others:
            other.is_applied = False

        category_ids = set(preset.selected_category_ids or [])
        item_ids = set(preset.selected_item_ids or [])
        for category in self._db.scalars(
            select(MenuCategory).where(
                MenuCategory.branch_id == preset.branch_id, MenuCategory.is_active.is_(True)
            )
        ):
            category.is_available = category.id in category_ids
        for item in self._db.scalars(
            select(MenuItem).where(MenuItem.branch_id == preset.branch_id, MenuItem.is_active.is_(True))
        ):
            item.is_available = item.id in item_ids

        preset.is_applied = True
        preset.applied_at = now
        preset.menu_sync_pending = True

    def _enqueue_menu_sync(self, preset: MenuPreset, best_effort: bool = False) -> bool:
        """
        Queue the third-party menu sync and clear the preset's pending flag.

        Returns False when a best-effort enqueue was skipped; the flag stays
        set and a later scheduled check queues it again.
        """
        payload = MenuSyncPayload(branch_id=preset.branch_id, preset_id=preset.id)
        if best_effort:
            if self._jobs.enqueue_best_effort(JobTypes.SYNC_MENU_TO_THIRD_PARTY, payload) is None:
                return False
        else:
            self._jobs.enqueue(JobTypes.SYNC_MENU_TO_THIRD_PARTY, payload)

        preset.menu_sync_pending = False
        try:
            safe_commit(self._db)
        except SQLAlchemyError:
            # The job is queued; a repeat sync on the next check is harmless
            logger.warning("Could not clear menu sync flag", preset_id=preset.id)
        return True

    def _retry_pending_syncs(self, branch_id: int) -> list[int]:
        pending = self._db.scalars(
            select(MenuPreset)
            .where(MenuPreset.branch_id == branch_id, MenuPreset.menu_sync_pending.is_(True))
            .order_by(MenuPreset.id)
        ).all()
        return [preset.id for preset in pending if self._enqueue_menu_sync(preset, best_effort=True)]

    def apply_preset(self, principal: Principal, preset_id: int) -> MenuPreset:
        """
        Apply the preset to the live menu, then queue the third-party menu sync.

        Raises:
            QueueUnavailableError: the menu was applied but the sync job
                could not be queued; the scheduler queues it once Redis is back.
        """
        authorize(principal, Operations.PRESETS_APPLY)
        preset = self._load_preset(principal, preset_id, for_update=True)
        authorize(principal, Operations.PRESETS_APPLY, branch_id=preset.branch_id)

        self._activate(preset, utcnow())
        preset.set_updated_by(principal.user_id, principal.email)
        log_change(
            self._db,
            chain_id=preset.chain_id,
            branch_id=preset.branch_id,
            user_id=principal.user_id,
            user_email=principal.email,
            entity_type="menu_preset",
            entity_id=preset.id,
            action=AuditAction.STATUS_CHANGE,
            old_values={"is_applied": False},
            new_values={"is_applied": True},
        )
        try:
            safe_commit(self._db)
        except SQLAlchemyError as e:
            raise OperationFailedError("apply the menu preset", preset_id=preset_id) from e
        self._db.refresh(preset)

        logger.info("Menu preset applied", preset_id=preset.id, branch_id=preset.branch_id)
        self._enqueue_menu_sync(preset)
        return preset

    def deactivate_current(self, principal: Principal, branch_id: Optional[int] = None) -> Optional[MenuPreset]:
        """Un-apply the branch's applied preset; the live menu stays as it is."""
        branch = resolve_branch(self._db, principal, branch_id)
        authorize(principal, Operations.PRESETS_APPLY, branch_id=branch.id)

        applied = self._db.scalars(
            select(MenuPreset).where(
                MenuPreset.branch_id == branch.id,
                MenuPreset.is_applied.is_(True),
            )
        ).all()
        if not applied:
            return None

        for preset in applied:
            preset.is_applied = False
            preset.set_updated_by(principal.user_id, principal.email)
            log_change(
                self._db,
                chain_id=preset.chain_id,
                branch_id=preset.branch_id,
                user_id=principal.user_id,
                user_email=principal.email,
                entity_type="menu_preset",
                entity_id=preset.id,
                action=AuditAction.STATUS_CHANGE,
                old_values={"is_applied": True},
                new_values={"is_applied": False},
            )
        try:
            safe_commit(self._db)
        except SQLAlchemyError as e:
            raise OperationFailedError("deactivate the menu preset", branch_id=branch.id) from e

        self._db.refresh(applied[0])
        return applied[0]

    def check_scheduled_presets(
        self,
        branch_id: Optional[int] = None,
        now: Optional[datetime] = None,
        principal: Optional[Principal] = None,
    ) -> ScheduledPresetReport:
        """
        Apply the auto-apply preset whose window contains `now`, un-apply
        auto-apply presets whose window has passed, then queue any menu sync
        a previous apply could not queue.

        When several windows overlap, one-time presets win over daily ones,
        then the lowest id.
        """
        now = now or utcnow()
        if principal is not None:
            branch = resolve_branch(self._db, principal, branch_id)
            authorize(principal, Operations.PRESETS_APPLY, branch_id=branch.id)
        else:
            branch = self._db.get(Branch, branch_id)
            if branch is None or not branch.is_active:
                raise NotFoundError("Branch", branch_id)

        report = ScheduledPresetReport(branch_id=branch.id, checked_at=now)
        presets = self._db.scalars(
            select(MenuPreset)
            .where(
                MenuPreset.branch_id == branch.id,
                MenuPreset.is_active.is_(True),
                MenuPreset.auto_apply.is_(True),
                MenuPreset.schedule_type.is_not(None),
            )
            .order_by(MenuPreset.id)
        ).all()

        due = [p for p in presets if window_contains(p, now, branch.timezone)]
        due.sort(key=lambda p: (p.schedule_type != ScheduleType.ONE_TIME, p.id))
        winner = due[0] if due else None

        for preset in presets:
            if preset.is_applied and preset not in due:
                preset.is_applied = False
                report.deactivated.append(preset.id)

        if winner is not None and not winner.is_applied:
            self._activate(winner, now)
            report.applied.append(winner.id)

        if not report.applied and not report.deactivated:
            report.synced = self._retry_pending_syncs(branch.id)
            return report

        for preset_id in report.applied + report.deactivated:
            log_change(
                self._db,
                chain_id=branch.chain_id,
                branch_id=branch.id,
                user_id=principal.user_id if principal else None,
                user_email=principal.email if principal else None,
                entity_type="menu_preset",
                entity_id=preset_id,
                action=AuditAction.STATUS_CHANGE,
                new_values={"is_applied": preset_id in report.applied},
                reason="schedule",
            )
        try:
            safe_commit(self._db)
        except SQLAlchemyError as e:
            raise OperationFailedError("apply scheduled presets", branch_id=branch.id) from e

        logger.info(
            "Scheduled presets checked",
            branch_id=branch.id,
            applied=report.applied,
            deactivated=report.deactivated,
        )
        report.synced = self._retry_pending_syncs(branch.id)
        return report
