"""
Auth Service — identity resolution, voter login codes, sessions, accounts.

This service owns the authentication bounded context:
    - Identity resolution (which sign-in path an email takes)
    - Voter login codes: request, verify, self-registration
    - Password sign-in for every durable account, session verification
    - Account self-service (change password)

Voters never receive a reusable secret by email. A verified code yields a
freshly rotated credential that the client exchanges at ``/login`` at once.
"""
import logging
import os

from fastapi import Depends

from multivote.access import Principal, issue_token, load_principal, sign_in
from multivote.accounts import change_password, ensure_super_admin
from multivote.errors import Forbidden, Unauthorized
from multivote.identity import AdminOrObserver, IdentityDirectory, VoterIdentity
from multivote.otp import (
    CodeAlreadyValid, CodeIssued, ElectionEnded, ElectionNotStarted, OtpEngine,
    PasswordRequired, RequestOutcome,
)
from multivote.schemas import (
    ChangePasswordRequest, CredentialResponse, EmailRequest, LoginRequest, LoginResponse,
    MeResponse, MessageResponse, RegisterResponse, RequestCodeResponse, ResolveResponse,
    TokenVerifyRequest, TokenVerifyResponse, VerifyCodeRequest,
)
from multivote.services.common import create_app, current_principal, otp_engine, store

logger = logging.getLogger(__name__)

SUPER_ADMIN_EMAIL = os.getenv("SUPER_ADMIN_EMAIL", "")
SUPER_ADMIN_PASSWORD = os.getenv("SUPER_ADMIN_PASSWORD", "")


async def _bootstrap(store_) -> None:
    if SUPER_ADMIN_EMAIL and SUPER_ADMIN_PASSWORD:
        await ensure_super_admin(store_, SUPER_ADMIN_EMAIL, SUPER_ADMIN_PASSWORD)


app = create_app(
    "auth",
    title="Auth Service",
    description="Identity resolution, one-time login codes, sessions and accounts",
    on_startup=_bootstrap,
)


def render_outcome(outcome: RequestOutcome) -> RequestCodeResponse:
    if isinstance(outcome, PasswordRequired):
        return RequestCodeResponse(outcome=outcome.outcome, user_type="admin",
                                   message="Sign in with your password")
    if isinstance(outcome, CodeIssued):
        return RequestCodeResponse(outcome=outcome.outcome, user_type="voter",
                                   message="A login code has been sent to your email",
                                   expires_in=outcome.expires_in)
    if isinstance(outcome, CodeAlreadyValid):
        return RequestCodeResponse(
            outcome=outcome.outcome, user_type="voter",
            message=f"A code was already sent and is valid for "
                    f"{outcome.minutes_remaining} more minutes",
            minutes_remaining=outcome.minutes_remaining,
        )
    if isinstance(outcome, ElectionNotStarted):
        return RequestCodeResponse(
            outcome=outcome.outcome, user_type="voter",
            message="Voting has not started yet. Please come back later.",
            instance_name=outcome.instance_name, status=outcome.status,
        )
    if isinstance(outcome, ElectionEnded):
        message = ("The election has ended. Use your last code to view the results."
                   if outcome.has_existing_code else "The election has ended.")
        return RequestCodeResponse(outcome=outcome.outcome, user_type="voter", message=message,
                                   instance_name=outcome.instance_name,
                                   has_existing_code=outcome.has_existing_code)
    raise TypeError(f"Unknown request outcome {outcome!r}")


# ==========================================================================
# 1. IDENTITY AND LOGIN CODES
# ==========================================================================

@app.post("/resolve", response_model=ResolveResponse)
async def resolve_identity(data: EmailRequest):
    identity = await IdentityDirectory(store()).resolve(data.email)
    if isinstance(identity, AdminOrObserver):
        return ResolveResponse(kind=identity.kind, role=identity.role,
                               instance_id=identity.instance_id)
    if isinstance(identity, VoterIdentity):
        return ResolveResponse(kind=identity.kind, instance_id=identity.instance_id,
                               status=identity.status)
    return ResolveResponse(kind=identity.kind)


@app.post("/request-code", response_model=RequestCodeResponse)
async def request_code(data: EmailRequest, engine: OtpEngine = Depends(otp_engine)):
    return render_outcome(await engine.request_code(data.email))


@app.post("/verify-code", response_model=CredentialResponse)
async def verify_code(data: VerifyCodeRequest, engine: OtpEngine = Depends(otp_engine)):
    login = await engine.verify_code(data.email, data.code)
    return CredentialResponse(
        email=login.credential.email,
        secret=login.credential.secret,
        account_id=login.credential.account_id,
        voter_id=login.voter_id,
        instance_id=login.instance_id,
        full_name=login.full_name,
        view_only=login.view_only,
    )


@app.post("/register", response_model=RegisterResponse, status_code=201)
async def register(data: EmailRequest, engine: OtpEngine = Depends(otp_engine)):
    registration = await engine.register(data.email)
    return RegisterResponse(
        message="Registration complete",
        instance_name=registration.instance_name,
        code=render_outcome(registration.code) if registration.code else None,
    )


# ==========================================================================
# 2. SESSIONS
# ==========================================================================

@app.post("/login", response_model=LoginResponse)
async def login(data: LoginRequest):
    principal = await sign_in(store(), data.email, data.password)
    return LoginResponse(
        token=issue_token(principal),
        kind=principal.kind,
        account_id=principal.account_id,
        role_id=principal.role_id,
        instance_id=principal.instance_id,
        voter_id=principal.voter_id,
    )


@app.post("/verify", response_model=TokenVerifyResponse)
async def verify_token(data: TokenVerifyRequest):
    try:
        principal = await load_principal(store(), data.token)
    except Unauthorized:
        return TokenVerifyResponse(valid=False)
    return TokenVerifyResponse(valid=True, kind=principal.kind,
                               account_id=principal.account_id, email=principal.email,
                               instance_id=principal.instance_id,
                               voter_id=principal.voter_id)


@app.get("/me", response_model=MeResponse)
async def me(principal: Principal = Depends(current_principal)):
    instance = await store().get_instance(principal.instance_id) if principal.instance_id else None
    voter = await store().get_voter(principal.voter_id) if principal.voter_id else None
    return MeResponse(
        account_id=principal.account_id,
        email=principal.email,
        kind=principal.kind,
        role_id=principal.role_id,
        instance_id=principal.instance_id,
        instance_name=instance.name if instance else None,
        instance_status=instance.status if instance else None,
        voter_id=principal.voter_id,
        full_name=voter.full_name if voter else None,
    )


@app.post("/change-password", response_model=MessageResponse)
async def change_own_password(data: ChangePasswordRequest,
                              principal: Principal = Depends(current_principal)):
    if principal.is_voter:
        raise Forbidden("Voters sign in with a login code")
    await change_password(store(), principal.account_id, data.current_password,
                          data.new_password)
    return {"message": "Password changed"}
