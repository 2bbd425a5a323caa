"""
Registration Service - Stage and Task Upserts.

Registering is idempotent: re-registering the same (stage, task) updates
the fields given and keeps the stored value for every field left as None.

Auto-detection when fields are omitted (each default is logged):
    script_filename  <- basename of script_path
    task_type        <- extension: .R -> "R", .py -> "python", .sh -> "sh"
    log_path         <- script_path's directory
    log_filename     <- .R -> .Rout, .py/.sh -> .log, otherwise name + ".log"

Exports:
    RegistrationService
    detect_task_type, derive_log_filename
"""

import os
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from core.models import StageRecord, TaskRecord, TaskRegistration
from core.utils import script_basename
from exceptions import InvalidArgumentError, NotFoundError
from infrastructure.interface_repository import IStoreDriver, IStoreSession
from infrastructure.tracking_repository import TrackingRepository
from util_logger import LoggerFactory, ComponentType

logger = LoggerFactory.create_logger(ComponentType.SERVICE, "RegistrationService")

_TYPE_BY_EXTENSION = {
    ".r": "R",
    ".py": "python",
    ".sh": "sh",
}

_LOG_EXTENSION = {
    ".r": ".Rout",
    ".py": ".log",
    ".sh": ".log",
}


def detect_task_type(script_filename: Optional[str]) -> Optional[str]:
    """Task type implied by a script's extension, or None when unknown."""
    if not script_filename:
        return None
    _, ext = os.path.splitext(script_filename)
    return _TYPE_BY_EXTENSION.get(ext.lower())


def derive_log_filename(script_filename: str) -> str:
    """Default log filename for a script."""
    stem, ext = os.path.splitext(script_filename)
    log_ext = _LOG_EXTENSION.get(ext.lower())
    if log_ext is None:
        return f"{script_filename}.log"
    return f"{stem}{log_ext}"


class RegistrationService:
    """
    Stage and task registration.

    Usage:
        service = RegistrationService(driver)
        task = service.register_task(
            stage_name="DAILY", task_name="Load prices",
            stage_order=3, script_path="/opt/jobs/daily/load_prices.R"
        )
    """

    def __init__(self, driver: IStoreDriver, repository: Optional[TrackingRepository] = None):
        self.driver = driver
        self.repo = repository or TrackingRepository(driver)

    def register_stage(self, stage_name: str, stage_order: Optional[int] = None,
                       description: Optional[str] = None,
                       session: Optional[IStoreSession] = None) -> StageRecord:
        if not stage_name or not stage_name.strip():
            raise InvalidArgumentError("stage_name must be a non-empty string")
        stage = self.repo.upsert_stage(stage_name.strip(), stage_order, description, session=session)
        logger.info(f"📋 Stage registered: {stage.stage_name} (order {stage.stage_order})")
        return stage

    def register_task(self, registration: Union[TaskRegistration, Mapping[str, Any], None] = None,
                      session: Optional[IStoreSession] = None, **fields) -> TaskRecord:
        """
        Upsert a task (and its stage).

        Accepts a TaskRegistration, a mapping, or keyword fields.

        Raises:
            InvalidArgumentError: Invalid fields, or no task_type given and
                none detectable from the script filename
        """
        reg = self._coerce(registration, fields)
        reg = self._apply_defaults(reg)

        with self.driver.session(existing=session) as s:
            stage = self.repo.upsert_stage(reg.stage_name, reg.stage_order, None, session=s)
            task = self.repo.upsert_task(
                stage.stage_id,
                reg.task_name,
                task_type=reg.task_type,
                task_order=reg.task_order,
                description=reg.description,
                script_path=reg.script_path,
                script_filename=reg.script_filename,
                log_path=reg.log_path,
                log_filename=reg.log_filename,
                session=s
            )
        logger.info(f"📋 Task registered: {task.label} (task_id={task.task_id}, type={task.task_type})")
        return task

    def register_tasks(self, registrations: Iterable[Union[TaskRegistration, Mapping[str, Any]]],
                       session: Optional[IStoreSession] = None) -> List[TaskRecord]:
        """Register several tasks in one transaction; all or nothing."""
        with self.driver.session(existing=session) as s:
            return [self.register_task(r, session=s) for r in registrations]

    def get_tasks(self, stage_name: Optional[str] = None) -> List[TaskRecord]:
        return self.repo.get_tasks(stage_name=stage_name)

    def get_stages(self) -> List[StageRecord]:
        return self.repo.get_stages()

    def delete_stage(self, stage_name: str, session: Optional[IStoreSession] = None) -> int:
        """
        Delete a stage with its tasks, runs, subtasks and metrics.

        Returns:
            Number of tasks that were registered in the stage.
        """
        with self.driver.session(existing=session) as s:
            stage = self.repo.get_stage_by_name(stage_name, session=s)
            if stage is None:
                raise NotFoundError(f"Stage {stage_name!r} not found")
            task_count = len(self.repo.get_tasks(stage_name=stage_name, session=s))
            self.repo.delete_stage(stage.stage_id, session=s)
        logger.warning(f"🗑️ Stage {stage_name} deleted with {task_count} task(s)")
        return task_count

    def clear_registrations(self, session: Optional[IStoreSession] = None) -> int:
        """Delete every stage and task. Returns the number of stages removed."""
        deleted = self.repo.clear_registrations(session=session)
        logger.warning(f"🗑️ Cleared all registrations ({deleted} stage(s))")
        return deleted

    # ------------------------------------------------------------------

    @staticmethod
    def _coerce(registration, fields: Dict[str, Any]) -> TaskRegistration:
        if isinstance(registration, TaskRegistration):
            if fields:
                return registration.model_copy(update=fields)
            return registration
        data = dict(registration or {})
        data.update(fields)
        try:
            return TaskRegistration(**data)
        except ValidationError as e:
            raise InvalidArgumentError(f"Invalid task registration: {e}") from e

    @staticmethod
    def _apply_defaults(reg: TaskRegistration) -> TaskRegistration:
        updates: Dict[str, Any] = {}
        script_path = reg.script_path
        script_filename = reg.script_filename

        if script_filename is None and script_path:
            script_filename = script_basename(script_path)
            updates["script_filename"] = script_filename
            logger.warning(f"⚠️ script_filename not given, using {script_filename!r} from script_path")

        if reg.task_type is None:
            detected = detect_task_type(script_filename)
            if detected is None:
                raise InvalidArgumentError(
                    f"task_type is required for {reg.task_name!r}: "
                    "it could not be detected from the script filename"
                )
            updates["task_type"] = detected
            logger.warning(f"⚠️ task_type not given, detected {detected!r} from {script_filename!r}")

        if reg.log_path is None and script_path:
            # script_path may name the script itself or its directory
            log_path = os.path.dirname(script_path) if script_filename and \
                script_basename(script_path) == script_filename else script_path
            updates["log_path"] = log_path
            logger.warning(f"⚠️ log_path not given, using {log_path!r}")

        if reg.log_filename is None and script_filename:
            log_filename = derive_log_filename(script_filename)
            updates["log_filename"] = log_filename
            logger.warning(f"⚠️ log_filename not given, using {log_filename!r}")

        return reg.model_copy(update=updates) if updates else reg
