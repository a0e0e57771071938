"""HTTP routes exposing the auth workflow to browser clients.

Each browser is identified by a ``device_id`` cookie and owns its own
workflow (see auth.devices). Once signed in it also carries the
``session_token`` cookie, which is re-validated on every request; a
device without a live session token is signed out.

Every route answers with the device's auth state; a failed operation
answers 400 with the message the workflow stored in ``error``.
"""

import ipaddress
import re
import secrets

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from api.base import ErrorCodes, error_response, request_id_of, success_response
from auth.config import AuthConfig
from auth.devices import DeviceWorkflows
from auth.notifications import AccountNotifier
from auth.workflow import AuthWorkflow

SESSION_COOKIE = "session_token"
DEVICE_COOKIE = "device_id"
DEVICE_COOKIE_MAX_AGE = 365 * 24 * 3600

_DEVICE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{32,128}$")


def _get_client_ip(request: Request) -> str | None:
    """Extract valid IP address from request, or None if invalid."""
    if not request.client:
        return None
    host = request.client.host
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def _set_cookie(response: Response, key: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=key,
        value=value,
        httponly=True,
        secure=True,
        samesite="lax",
        max_age=max_age,
    )


class SignInLinkBody(BaseModel):
    email: str
    name: str | None = None


class RegisterBody(BaseModel):
    email: str
    name: str = Field(..., min_length=1)


class ProfileBody(BaseModel):
    name: str = Field(..., min_length=1)


def create_auth_router(
    devices: DeviceWorkflows,
    config: AuthConfig,
    notifier: AccountNotifier | None = None,
) -> APIRouter:
    """Create auth router over the per-device workflows."""
    router = APIRouter(tags=["auth"])

    def device_workflow(request: Request, response: Response) -> AuthWorkflow:
        """Workflow of the calling device, aligned with its session cookie."""
        device_id = request.cookies.get(DEVICE_COOKIE)
        if not device_id or not _DEVICE_ID_PATTERN.match(device_id):
            device_id = secrets.token_urlsafe(32)
            _set_cookie(response, DEVICE_COOKIE, device_id, DEVICE_COOKIE_MAX_AGE)
        workflow = devices.get(device_id)
        workflow.resume_session(request.cookies.get(SESSION_COOKIE))
        return workflow

    def sync_session_cookie(request: Request, response: Response, workflow: AuthWorkflow) -> None:
        session = workflow.session
        presented = request.cookies.get(SESSION_COOKIE)
        if session is None:
            if presented:
                response.delete_cookie(SESSION_COOKIE, httponly=True, secure=True, samesite="lax")
        elif session.token != presented:
            _set_cookie(response, SESSION_COOKIE, session.token, config.session_expiry_hours * 3600)

    def state_payload(workflow: AuthWorkflow) -> dict:
        state = workflow.state
        return {
            "user": state.current_user.model_dump(mode="json") if state.current_user else None,
            "is_authenticated": state.is_authenticated,
            "loading": state.loading,
            "error": state.error,
            "pending_email": state.pending_email,
        }

    def respond(request: Request, response: Response, workflow: AuthWorkflow, ok: bool = True):
        sync_session_cookie(request, response, workflow)
        if ok:
            return success_response(state_payload(workflow), request_id_of(request))
        response.status_code = 400
        return error_response(
            ErrorCodes.AUTH_FAILED, workflow.error or "Request failed", request_id_of(request)
        )

    def reject_signed_out(request: Request, response: Response, workflow: AuthWorkflow):
        sync_session_cookie(request, response, workflow)
        response.status_code = 401
        return error_response(
            ErrorCodes.NOT_AUTHENTICATED, "Authentication required", request_id_of(request)
        )

    @router.post("/request-link")
    def request_sign_in_link(
        request: Request,
        response: Response,
        body: SignInLinkBody,
        workflow: AuthWorkflow = Depends(device_workflow),
    ):
        """Email a sign-in link (or sign in directly when link auth is off)."""
        ok = workflow.request_sign_in(body.email, config.continue_url, name=body.name)
        return respond(request, response, workflow, ok)

    @router.get("/verify")
    def verify_sign_in_link(
        request: Request,
        response: Response,
        email: str | None = None,
        workflow: AuthWorkflow = Depends(device_workflow),
    ):
        """Landing page of the emailed link.

        The email comes from the query string or, on the requesting device,
        from its pending sign-in.
        """
        email = email or workflow.pending_email
        if not email:
            response.status_code = 400
            return error_response(
                ErrorCodes.EMAIL_REQUIRED,
                "Enter the email address the link was sent to",
                request_id_of(request),
            )

        ok = workflow.confirm_sign_in(email, str(request.url))
        user = workflow.current_user
        # login_count > 1: an existing account signed in again
        if ok and notifier is not None and user is not None and user.login_count > 1:
            notifier.signed_in(user, request.headers.get("User-Agent"), _get_client_ip(request))
        return respond(request, response, workflow, ok)

    @router.post("/register")
    def register(
        request: Request,
        response: Response,
        body: RegisterBody,
        workflow: AuthWorkflow = Depends(device_workflow),
    ):
        return respond(request, response, workflow, workflow.register(body.email, body.name))

    @router.get("/state")
    def get_state(
        request: Request,
        response: Response,
        workflow: AuthWorkflow = Depends(device_workflow),
    ):
        return respond(request, response, workflow)

    @router.patch("/profile")
    def update_profile(
        request: Request,
        response: Response,
        body: ProfileBody,
        workflow: AuthWorkflow = Depends(device_workflow),
    ):
        if workflow.session is None:
            return reject_signed_out(request, response, workflow)
        return respond(request, response, workflow, workflow.update_profile(body.name))

    @router.delete("/account")
    def delete_account(
        request: Request,
        response: Response,
        workflow: AuthWorkflow = Depends(device_workflow),
    ):
        """Soft-delete the account. The session cookie stays valid."""
        if workflow.session is None:
            return reject_signed_out(request, response, workflow)
        return respond(request, response, workflow, workflow.delete_account())

    @router.post("/logout")
    def logout(
        request: Request,
        response: Response,
        workflow: AuthWorkflow = Depends(device_workflow),
    ):
        """Sign out and clear the session cookie, even when revocation fails."""
        workflow.sign_out()
        return respond(request, response, workflow)

    @router.post("/clear-error")
    def clear_error(
        request: Request,
        response: Response,
        workflow: AuthWorkflow = Depends(device_workflow),
    ):
        workflow.clear_error()
        return respond(request, response, workflow)

    return router
