"""
Document Retention API routes.

Endpoints:
- GET /retention/policies - List retention policies
- POST /retention/policies - Create retention policy
- GET /retention/policies/{id} - Get policy details
- PUT /retention/policies/{id} - Update policy
- DELETE /retention/policies/{id} - Delete policy (detaches its documents)
- GET /retention/policies/{id}/preview - Preview which documents a policy matches
- POST /retention/init-defaults - Create the default HR policy set
- POST /retention/apply - Start a policy application job
- POST /retention/actions - Start a retention actions job
- POST /retention/actions/execute - Run retention actions and wait for the counts
- GET /retention/jobs - List jobs
- GET /retention/jobs/{id} - Job status
- POST /retention/jobs/{id}/cancel - Request cancellation
- POST /retention/jobs/{id}/resume - Resume an orphaned running job
- GET /retention/summary - Retention overview
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from docservice.database import get_db
from docservice.error_handlers import BadRequestError, ConflictError, NotFoundError
from docservice.models import RetentionJobType
from docservice.services.retention_jobs import (
    RetentionJobConflict, RetentionJobError, RetentionJobNotFound,
)
from docservice.services.retention_runtime import RetentionRuntime, get_retention_runtime
from docservice.services.retention_service import RetentionService, RetentionError, RetentionPolicyNotFound
from docservice.schemas.retention_schemas import (
    RetentionPolicyCreate,
    RetentionPolicyUpdate,
    RetentionPolicyResponse,
    RetentionPreviewResponse,
    RetentionRunRequest,
    RetentionJobResponse,
    RetentionActionsResponse,
    RetentionSummaryResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/retention", tags=["Document Retention"])


def _conflict(e: RetentionJobConflict) -> ConflictError:
    details = {"active_job_id": str(e.active_job_id)} if e.active_job_id else None
    return ConflictError(str(e), details=details)


# ==================== Policies ====================

@router.get(
    "/policies",
    response_model=list[RetentionPolicyResponse],
    status_code=status.HTTP_200_OK,
    summary="List retention policies"
)
async def list_policies(
    document_category: Optional[str] = Query(None, description="Filter by document category"),
    is_active: Optional[bool] = Query(None, description="Filter by active status"),
    db: Session = Depends(get_db),
):
    """
    List retention policies in precedence order (oldest first).

    When several active policies match one document, the first one in
    this list wins.
    """
    service = RetentionService(db)
    policies = service.get_policies(document_category=document_category, is_active=is_active)

    return [RetentionPolicyResponse.model_validate(p) for p in policies]


@router.post(
    "/policies",
    response_model=RetentionPolicyResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create retention policy"
)
async def create_policy(
    policy_data: RetentionPolicyCreate,
    db: Session = Depends(get_db),
):
    """
    Create a new retention policy.

    **Example:**
    ```json
    {
        "name": "Payroll - 7 Years",
        "document_category": "PAYROLL",
        "retention_period_days": 2555,
        "action": "archive",
        "conditions": [{"field": "department", "operator": "equals", "value": "Finance"}]
    }
    ```
    """
    service = RetentionService(db)
    data = policy_data.model_dump(mode="json")

    try:
        policy = service.create_policy(**data)
    except RetentionError as e:
        raise BadRequestError(str(e))

    return RetentionPolicyResponse.model_validate(policy)


@router.get(
    "/policies/{policy_id}",
    response_model=RetentionPolicyResponse,
    status_code=status.HTTP_200_OK,
    summary="Get policy details"
)
async def get_policy(
    policy_id: UUID,
    db: Session = Depends(get_db),
):
    """Get details of a specific retention policy."""
    service = RetentionService(db)
    policy = service.get_policy(policy_id)

    if not policy:
        raise NotFoundError("Policy not found", resource_type="retention_policy")

    return RetentionPolicyResponse.model_validate(policy)


@router.put(
    "/policies/{policy_id}",
    response_model=RetentionPolicyResponse,
    status_code=status.HTTP_200_OK,
    summary="Update retention policy"
)
async def update_policy(
    policy_id: UUID,
    policy_data: RetentionPolicyUpdate,
    db: Session = Depends(get_db),
):
    """
    Update an existing retention policy.

    Existing assignments are not recomputed until the next apply run.
    """
    service = RetentionService(db)
    updates = policy_data.model_dump(mode="json", exclude_unset=True)
    updated_by = updates.pop("updated_by", None)

    try:
        policy = service.update_policy(policy_id, updated_by=updated_by, **updates)
    except RetentionPolicyNotFound as e:
        raise NotFoundError(str(e), resource_type="retention_policy")
    except RetentionError as e:
        raise BadRequestError(str(e))

    return RetentionPolicyResponse.model_validate(policy)


@router.delete(
    "/policies/{policy_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete retention policy"
)
async def delete_policy(
    policy_id: UUID,
    deleted_by: Optional[str] = Query(None, max_length=100),
    db: Session = Depends(get_db),
):
    """
    Delete a retention policy.

    Documents bound to the policy lose their assignment and deadline.
    Actions already taken are not undone.
    """
    service = RetentionService(db)

    try:
        service.delete_policy(policy_id, deleted_by=deleted_by)
    except RetentionPolicyNotFound as e:
        raise NotFoundError(str(e), resource_type="retention_policy")


@router.get(
    "/policies/{policy_id}/preview",
    response_model=RetentionPreviewResponse,
    status_code=status.HTTP_200_OK,
    summary="Preview policy matches"
)
async def preview_policy(
    policy_id: UUID,
    db: Session = Depends(get_db),
):
    """
    Preview which live documents a policy matches, without writing anything.
    """
    service = RetentionService(db)
    policy = service.get_policy(policy_id)

    if not policy:
        raise NotFoundError("Policy not found", resource_type="retention_policy")

    return RetentionPreviewResponse(**service.preview_policy(policy))


@router.post(
    "/init-defaults",
    response_model=list[RetentionPolicyResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Initialize default policies"
)
async def init_default_policies(
    db: Session = Depends(get_db),
):
    """
    Create the default HR retention policies if no policy exists.

    All defaults are created inactive.
    """
    service = RetentionService(db)
    policies = service.create_default_policies(created_by="system")

    return [RetentionPolicyResponse.model_validate(p) for p in policies]


# ==================== Runs & Jobs ====================

@router.post(
    "/apply",
    response_model=RetentionJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Apply retention policies"
)
async def apply_policies(
    request: RetentionRunRequest = RetentionRunRequest(),
    runtime: RetentionRuntime = Depends(get_retention_runtime),
):
    """
    Start a job assigning policies and deadlines to documents.

    Returns the pending job immediately; poll `/retention/jobs/{id}`.
    Returns 409 while another apply job is pending or running.
    """
    try:
        job = runtime.registry.start_apply(dry_run=request.dry_run, requested_by=request.requested_by)
    except RetentionJobConflict as e:
        raise _conflict(e)

    return RetentionJobResponse.model_validate(job)


@router.post(
    "/actions",
    response_model=RetentionJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start retention actions"
)
async def start_actions(
    request: RetentionRunRequest = RetentionRunRequest(),
    runtime: RetentionRuntime = Depends(get_retention_runtime),
):
    """
    Start a job executing due retention actions (delete, archive, review).

    **Warning:** a non-dry run permanently deletes documents whose
    delete deadline has passed and that are not under legal hold.
    """
    try:
        job = runtime.registry.start_actions(dry_run=request.dry_run, requested_by=request.requested_by)
    except RetentionJobConflict as e:
        raise _conflict(e)

    return RetentionJobResponse.model_validate(job)


@router.post(
    "/actions/execute",
    response_model=RetentionActionsResponse,
    status_code=status.HTTP_200_OK,
    summary="Execute retention actions synchronously"
)
def execute_actions(
    request: RetentionRunRequest = RetentionRunRequest(),
    runtime: RetentionRuntime = Depends(get_retention_runtime),
):
    """
    Run retention actions on the request thread and return the counts.

    The run is still recorded as an actions job. A run that fails part-way
    returns its partial counts with status "failed" and last_error set.
    """
    try:
        job = runtime.registry.run_sync(
            RetentionJobType.ACTIONS.value, dry_run=request.dry_run, requested_by=request.requested_by
        )
    except RetentionJobConflict as e:
        raise _conflict(e)

    summary = dict(job.summary or {})
    if job.last_error and not summary:
        raise ConflictError(job.last_error, details={"job_id": str(job.id)})

    return RetentionActionsResponse(
        job_id=job.id,
        status=job.status,
        last_error=job.last_error,
        deleted=summary.get("deleted", 0),
        archived=summary.get("archived", 0),
        reviewed=summary.get("reviewed", 0),
        failed=job.failed_count,
        held=summary.get("held", 0),
        candidates=summary.get("candidates", 0),
        failures=job.failures or [],
    )


@router.get(
    "/jobs",
    response_model=list[RetentionJobResponse],
    status_code=status.HTTP_200_OK,
    summary="List retention jobs"
)
async def list_jobs(
    job_type: Optional[RetentionJobType] = Query(None, description="Filter by job type"),
    limit: int = Query(50, ge=1, le=500, description="Maximum results"),
    runtime: RetentionRuntime = Depends(get_retention_runtime),
):
    """List retention jobs, newest first."""
    jobs = runtime.registry.list_jobs(job_type=job_type.value if job_type else None, limit=limit)

    return [RetentionJobResponse.model_validate(job) for job in jobs]


@router.get(
    "/jobs/{job_id}",
    response_model=RetentionJobResponse,
    status_code=status.HTTP_200_OK,
    summary="Get retention job"
)
async def get_job(
    job_id: UUID,
    runtime: RetentionRuntime = Depends(get_retention_runtime),
):
    """Status and progress counters of one job."""
    job = runtime.registry.get_job(job_id)

    if not job:
        raise NotFoundError("Retention job not found", resource_type="retention_job")

    return RetentionJobResponse.model_validate(job)


@router.post(
    "/jobs/{job_id}/cancel",
    response_model=RetentionJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Cancel retention job"
)
async def cancel_job(
    job_id: UUID,
    runtime: RetentionRuntime = Depends(get_retention_runtime),
):
    """
    Request cooperative cancellation.

    A running job stops before its next document and ends `cancelled`.
    """
    try:
        job = runtime.registry.cancel(job_id)
    except RetentionJobNotFound as e:
        raise NotFoundError(str(e), resource_type="retention_job")
    except RetentionJobError as e:
        raise ConflictError(str(e))

    return RetentionJobResponse.model_validate(job)


@router.post(
    "/jobs/{job_id}/resume",
    response_model=RetentionJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Resume retention job"
)
async def resume_job(
    job_id: UUID,
    runtime: RetentionRuntime = Depends(get_retention_runtime),
):
    """
    Resume a job left `running` by a worker that died.

    Continues from the last persisted cursor; counters keep their values.
    """
    try:
        job = runtime.registry.resume(job_id)
    except RetentionJobNotFound as e:
        raise NotFoundError(str(e), resource_type="retention_job")
    except RetentionJobConflict as e:
        raise _conflict(e)
    except RetentionJobError as e:
        raise ConflictError(str(e))

    return RetentionJobResponse.model_validate(job)


@router.get(
    "/summary",
    response_model=RetentionSummaryResponse,
    status_code=status.HTTP_200_OK,
    summary="Get retention summary"
)
async def get_summary(
    db: Session = Depends(get_db),
):
    """
    Retention overview.

    Returns:
    - Policy counts (total, active)
    - Documents currently due, per action
    - Documents under legal hold
    - Last run date
    """
    service = RetentionService(db)

    return RetentionSummaryResponse(**service.get_summary())
