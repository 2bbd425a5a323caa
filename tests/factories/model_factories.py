"""
Randomized model factories with anti-overfitting defaults.

Every factory call generates randomized non-identity fields
(names, orders, descriptions, timestamps) so tests cannot rely on
specific default values.
"""

import random
import string
import uuid
from datetime import datetime, timezone, timedelta


def _random_suffix(length: int = 6) -> str:
    """Generate random alphanumeric suffix."""
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def _random_timestamp() -> datetime:
    """Generate random timestamp within last 30 days."""
    offset = random.randint(0, 30 * 24 * 3600)
    return datetime.now(timezone.utc) - timedelta(seconds=offset)


def make_task_registration(stage_name: str = None, task_name: str = None,
                           script_ext: str = ".R", **overrides):
    """
    Build task registration data with randomized fields.

    Args:
        stage_name: Optional fixed stage name
        task_name: Optional fixed task name
        script_ext: Extension of the generated script filename
        **overrides: Any field override

    Returns:
        dict suitable for RegistrationService.register_task(dict)
    """
    suffix = _random_suffix()
    _task_name = task_name or f"task_{suffix}"
    base = {
        "stage_name": stage_name or f"STAGE_{suffix.upper()}",
        "task_name": _task_name,
        "stage_order": random.randint(1, 50),
        "task_order": random.randint(1, 50),
        "description": f"Generated task {suffix}",
        "script_path": f"/opt/pipeline/{suffix}/{_task_name}{script_ext}",
    }
    base.update(overrides)
    return base


def make_run_record(run_id: str = None, task_id: int = None, status=None, **overrides):
    """
    Build a TaskRunRecord dict with randomized non-identity fields.

    Returns:
        dict suitable for TaskRunRecord(**result)
    """
    from core.models.enums import RunStatus

    start = _random_timestamp()
    base = {
        "run_id": run_id or str(uuid.uuid4()),
        "task_id": task_id if task_id is not None else random.randint(1, 1000),
        "hostname": f"host-{_random_suffix(4)}",
        "process_id": random.randint(100, 60000),
        "status": status or RunStatus.RUNNING,
        "start_time": start,
        "last_update": start + timedelta(seconds=random.randint(1, 600)),
        "total_subtasks": random.randint(1, 10),
        "metadata": {"batch": _random_suffix()},
    }
    base.update(overrides)
    return base


def make_subtask_record(run_id: str = None, subtask_number: int = None, status=None,
                        **overrides):
    """
    Build a SubtaskProgressRecord dict with randomized progress.

    Returns:
        dict suitable for SubtaskProgressRecord(**result)
    """
    from core.models.enums import SubtaskStatus

    items_total = random.randint(10, 1000)
    base = {
        "run_id": run_id or str(uuid.uuid4()),
        "subtask_number": subtask_number or random.randint(1, 20),
        "subtask_name": f"subtask_{_random_suffix()}",
        "status": status or SubtaskStatus.RUNNING,
        "start_time": _random_timestamp(),
        "items_total": items_total,
        "items_complete": random.randint(0, items_total),
    }
    base.update(overrides)
    return base
