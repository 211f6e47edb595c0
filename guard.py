"""
Access and reentrancy guard.

Privileged actions are checked against an ``AccessPolicy`` chosen at
construction time. Each check receives the action name together with the
normalized arguments of the call, so a policy may bind an authorization to
one concrete invocation. Operations that call out to the value-transfer
primitive run inside a ``ReentrancyGuard``; re-entering any guarded operation
while one is in progress fails immediately with ``ReentrantCall``.
"""
import hashlib
import json
import logging
from typing import Dict, Iterable, Optional, Set

from errors import InvalidAddress, ReentrantCall, Unauthorized
from store import normalize_address

logger = logging.getLogger(__name__)

# Privileged actions
VERIFY_CHARITY = "verify_charity"
SET_TOKEN_SUPPORT = "set_token_support"
EMERGENCY_WITHDRAW = "emergency_withdraw"


def action_digest(action: str, **params) -> str:
    """Key identifying one invocation: the action name and its arguments."""
    canonical = {
        k: normalize_address(v) if isinstance(v, str) else v
        for k, v in params.items()
    }
    body = json.dumps(canonical, sort_keys=True, separators=(",", ":"), default=str)
    return f"{action}:{hashlib.sha256(body.encode('utf-8')).hexdigest()}"


class AccessPolicy:
    def require(self, caller: Optional[str], action: str, **params) -> None:
        raise NotImplementedError

    def consume(self, action: str, **params) -> None:
        """Called once a privileged action has committed."""


class SingleOwnerPolicy(AccessPolicy):
    def __init__(self, owner: str):
        owner = normalize_address(owner)
        if owner is None:
            raise InvalidAddress("owner must not be empty")
        self.owner = owner

    def require(self, caller, action, **params):
        if normalize_address(caller) != self.owner:
            raise Unauthorized(f"{caller} may not {action}")


class RoleBasedPolicy(AccessPolicy):
    """Per-action grants. Admins may perform every action and manage grants."""

    def __init__(self, admins: Iterable[str], grants: Optional[Dict[str, Iterable[str]]] = None):
        self.admins: Set[str] = {a for a in map(normalize_address, admins) if a}
        if not self.admins:
            raise InvalidAddress("at least one admin is required")
        self.grants: Dict[str, Set[str]] = {}
        for action, members in (grants or {}).items():
            self.grants[action] = {m for m in map(normalize_address, members) if m}

    def has_role(self, caller: Optional[str], action: str) -> bool:
        caller = normalize_address(caller)
        return caller in self.admins or caller in self.grants.get(action, set())

    def require(self, caller, action, **params):
        if not self.has_role(caller, action):
            raise Unauthorized(f"{caller} lacks the {action} role")

    def grant(self, caller: str, action: str, member: str) -> None:
        if normalize_address(caller) not in self.admins:
            raise Unauthorized(f"{caller} is not an admin")
        member = normalize_address(member)
        if member is None:
            raise InvalidAddress("member must not be empty")
        self.grants.setdefault(action, set()).add(member)

    def revoke(self, caller: str, action: str, member: str) -> None:
        if normalize_address(caller) not in self.admins:
            raise Unauthorized(f"{caller} is not an admin")
        self.grants.get(action, set()).discard(normalize_address(member))


class MultiSignaturePolicy(AccessPolicy):
    """
    An invocation is authorized once ``threshold`` distinct signers approved it.

    Approvals name the action and its arguments, so approving the
    verification of one charity does not authorize verifying another. The
    caller performing the action must itself be a signer. Approvals are
    consumed when the action commits, so each execution needs a fresh round.
    """

    def __init__(self, signers: Iterable[str], threshold: int):
        self.signers: Set[str] = {s for s in map(normalize_address, signers) if s}
        if not self.signers:
            raise InvalidAddress("at least one signer is required")
        if threshold < 1 or threshold > len(self.signers):
            raise ValueError(f"threshold must be between 1 and {len(self.signers)}")
        self.threshold = threshold
        self.approvals: Dict[str, Set[str]] = {}

    def approve(self, signer: str, action: str, **params) -> int:
        signer = normalize_address(signer)
        if signer not in self.signers:
            raise Unauthorized(f"{signer} is not a signer")
        approvals = self.approvals.setdefault(action_digest(action, **params), set())
        approvals.add(signer)
        logger.info("%s approved %s %s (%d/%d)", signer, action, params, len(approvals), self.threshold)
        return len(approvals)

    def pending(self, action: str, **params) -> int:
        return len(self.approvals.get(action_digest(action, **params), set()))

    def require(self, caller, action, **params):
        if normalize_address(caller) not in self.signers:
            raise Unauthorized(f"{caller} is not a signer")
        count = self.pending(action, **params)
        if count < self.threshold:
            raise Unauthorized(f"{action} {params} has {count}/{self.threshold} approvals")

    def consume(self, action, **params):
        self.approvals.pop(action_digest(action, **params), None)


def build_policy(settings) -> AccessPolicy:
    kind = settings.access_policy
    if kind == "single_owner":
        return SingleOwnerPolicy(settings.owner_address)
    if kind == "multisig":
        return MultiSignaturePolicy(settings.multisig_signer_list, settings.multisig_threshold)
    if kind == "roles":
        return RoleBasedPolicy(settings.admin_address_list or [settings.owner_address])
    raise ValueError(f"Unknown access policy: {kind}")


class ReentrancyGuard:
    def __init__(self):
        self._entered = False

    @property
    def entered(self) -> bool:
        return self._entered

    def __enter__(self):
        if self._entered:
            logger.warning("Blocked reentrant call into guarded operation")
            raise ReentrantCall()
        self._entered = True
        return self

    def __exit__(self, exc_type, exc, tb):
        self._entered = False
        return False
