"""
Sync job status API
"""
from flask import Blueprint, request

from ..middleware.auth import require_auth
from ..models import JobState
from ..services import get_services
from ..utils.logger import get_logger
from ..utils.responses import ApiResponse, success_response

jobs_bp = Blueprint('jobs', __name__)
logger = get_logger('jobs_api')

_STATES = (
    JobState.PENDING, JobState.RUNNING, JobState.SUCCEEDED, JobState.FAILED,
    JobState.RETRYING, JobState.DEAD, JobState.CANCELLED,
)


@jobs_bp.route('/jobs', methods=['GET'])
def list_jobs():
    """
    Recent sync jobs, newest first

    Query Parameters:
        - state: filter by job state
        - channel_id: filter by channel
        - limit: max jobs (default 50, max 500)
    """
    state = request.args.get('state')
    if state and state not in _STATES:
        return ApiResponse.validation_error(f'Invalid state, must be one of {list(_STATES)}')

    limit = request.args.get('limit', 50, type=int)
    limit = max(1, min(limit, 500))

    jobs = get_services().queue.list_jobs(
        state=state,
        channel_id=request.args.get('channel_id'),
        limit=limit,
    )
    return success_response([job.to_dict() for job in jobs], f'{len(jobs)} jobs')


@jobs_bp.route('/jobs/<int:job_id>', methods=['GET'])
def get_job(job_id):
    job = get_services().queue.get_job(job_id)
    if not job:
        return ApiResponse.not_found('Job not found')
    return success_response(job.to_dict(include_result=True))


@jobs_bp.route('/jobs/<int:job_id>/cancel', methods=['POST'])
@require_auth
def cancel_job(job_id):
    """Cancel a waiting job, or ask a running one to stop at the next page."""
    job = get_services().queue.cancel(job_id)
    if not job:
        return ApiResponse.not_found('Job not found')
    return success_response(job.to_dict(), 'Cancellation requested')


@jobs_bp.route('/jobs/<int:job_id>/requeue', methods=['POST'])
@require_auth
def requeue_job(job_id):
    """Enqueue a dead, failed or cancelled job again."""
    try:
        requeued = get_services().queue.requeue(job_id)
    except ValueError as e:
        return ApiResponse.conflict(str(e), 'JOB_NOT_REQUEUEABLE')

    if requeued is None:
        return ApiResponse.not_found('Job not found')

    job, created = requeued
    data = {'jobId': job.id, 'state': job.state}
    if created:
        logger.info(f"Job {job_id} requeued as job {job.id}")
        return ApiResponse.accepted(data, 'Job requeued')
    return success_response(data, 'Sync already queued')
