"""
Sync trigger API
"""
from flask import Blueprint, current_app, request

from ..middleware.auth import require_auth
from ..services import get_services
from ..services.sync.coordinator import MODE_ENQUEUE, MODE_JOIN
from ..utils.logger import get_logger
from ..utils.responses import ApiResponse, success_response
from ..utils.validators import parse_bool, validate_channel_id, validate_sync_kind

sync_bp = Blueprint('sync', __name__)
logger = get_logger('sync_api')


@sync_bp.route('/sync/<channel_id>', methods=['POST'])
@require_auth
def trigger_sync(channel_id):
    """
    Trigger a channel sync

    Query Parameters:
        - kind: full | videos | comments (default full)
        - force: bypass the response cache
        - immediate: run inline instead of queueing
        - join: with immediate, wait for a sync already in flight

    Returns:
        202 {jobId} for a new job, 200 {jobId} when an active job was reused,
        or the SyncResult for an inline run
    """
    is_valid, error_msg = validate_channel_id(channel_id)
    if not is_valid:
        return ApiResponse.validation_error(error_msg)

    is_valid, error_msg, kind = validate_sync_kind(request.args.get('kind'))
    if not is_valid:
        return ApiResponse.validation_error(error_msg)

    force_refresh = parse_bool(request.args.get('force'))
    services = get_services()

    if parse_bool(request.args.get('immediate')):
        mode = MODE_JOIN if parse_bool(request.args.get('join')) else MODE_ENQUEUE
        # SyncAlreadyInProgress and SyncTimeout map to 409/504 in the app error handler
        result = services.coordinator.sync_channel(
            channel_id,
            kind=kind,
            force_refresh=force_refresh,
            mode=mode,
            deadline=current_app.config.get('SYNC_DEADLINE_SECONDS') or None,
        )
        return success_response(result.to_dict(), f'Sync finished: {result.outcome}')

    job, created = services.queue.enqueue(channel_id, kind, force_refresh=force_refresh)
    data = {'jobId': job.id, 'state': job.state}
    if created:
        logger.info(f"Sync queued via API: {channel_id}/{kind} -> job {job.id}")
        return ApiResponse.accepted(data, 'Sync queued')
    return success_response(data, 'Sync already queued')
