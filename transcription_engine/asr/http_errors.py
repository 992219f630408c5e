"""HTTP failure classification shared by the provider clients.

Network errors, auth failures, throttling and server errors are recoverable
(ProviderUnavailable). Other client errors mean the provider rejected the
request (ProviderRejected). A 404 on a job lookup means the job is gone
(JobNotFound).
"""

import httpx

from transcription_engine.utils.errors import (
    JobNotFound,
    ProviderError,
    ProviderRejected,
    ProviderUnavailable,
)

RECOVERABLE_STATUS_CODES = {401, 403, 408, 409, 425, 429}


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        error = body.get("error") or body.get("message") or body.get("detail")
        if isinstance(error, dict):
            error = error.get("message")
        if error:
            return str(error)[:200]
    return response.text[:200]


def raise_for_provider_status(
    response: httpx.Response,
    provider: str,
    action: str,
    job_id: str | None = None,
    expected: tuple[int, ...] = (200,),
) -> None:
    """Raise the matching ProviderError when a response is unsuccessful.

    Args:
        response: Provider HTTP response.
        provider: Registry name of the provider.
        action: Short description used in the error message.
        job_id: Remote job id, when the request concerned a job.
        expected: Status codes that count as success.

    Raises:
        JobNotFound: On 404 for a job-scoped request.
        ProviderUnavailable: On auth, throttling and server errors.
        ProviderRejected: On any other non-success status.
    """
    status = response.status_code
    if status in expected:
        return

    detail = _error_detail(response)
    message = f"{provider} {action} failed with status {status}: {detail}"

    if status == 404 and job_id is not None:
        raise JobNotFound(message, provider=provider, job_id=job_id)
    if status in RECOVERABLE_STATUS_CODES or status >= 500:
        raise ProviderUnavailable(
            message, provider=provider, job_id=job_id, code=f"http_{status}"
        )
    raise ProviderRejected(message, provider=provider, job_id=job_id, code=f"http_{status}")


def transport_error(
    exc: Exception, provider: str, action: str, job_id: str | None = None
) -> ProviderError:
    """Wrap a network-level failure as a recoverable provider error."""
    return ProviderUnavailable(
        f"{provider} {action} failed: {exc}",
        provider=provider,
        job_id=job_id,
        code="network_error",
    )
