"""
Mobile Wallet Adapter protocol service.

Sessions go connected -> (authorized) -> disconnected. Each signing request
runs validate -> track -> approve -> sign -> track, item by item and in input
order. Only structural problems (unknown or unauthorized session, empty batch)
raise; per-item failures come back as ``SignResult.error``.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import base58

from phone_sim.events import EventEmitter
from phone_sim.scheduling import TimerRegistry
from phone_sim.seed_vault import SeedVault, SeedVaultError, Wallet
from phone_sim.seed_vault.types import utcnow
from phone_sim.transaction import Transaction

from .approval import TransactionApprovalSimulator
from .exceptions import (
    InvalidRequestError,
    MWAError,
    NoWalletsAvailableError,
    SessionNotAuthorizedError,
    SessionNotFoundError,
    TransactionRejectedError,
    TransactionValidationFailedError,
)
from .models import (
    WALLET_URI_BASE,
    AuthorizeRequest,
    AuthorizeResult,
    ConnectionState,
    MWASession,
    SignResult,
    generate_session_id,
    generate_transaction_id,
)
from .tracker import TransactionLogEntry, TransactionStatus, TransactionTracker
from .validator import ValidationResult, validate_transaction

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TIMEOUT = 30 * 60

# (source event, service event)
_APPROVAL_FORWARDS = (
    ("approvalRequested", "transactionApprovalRequested"),
    ("approvalResult", "transactionApprovalResult"),
    ("transactionDisplayed", "transactionDisplayed"),
)
_TRACKER_FORWARDS = (
    ("transactionCreated", "transactionCreated"),
    ("statusUpdated", "transactionStatusUpdated"),
    ("signatureAdded", "transactionSignatureAdded"),
    ("errorAdded", "transactionErrorAdded"),
)


class MWAService(EventEmitter):
    """
    Session table plus the signing pipeline on top of one Seed Vault.

    Args:
        seed_vault: Vault that owns the wallets; must be initialized and
            unlocked before sessions can be authorized.
        session_timeout: Idle seconds before a session is disconnected.
        approval: Approval simulator; a default one is created if omitted.
        tracker: Transaction tracker; a default one is created if omitted.
    """

    def __init__(
        self,
        seed_vault: SeedVault,
        session_timeout: float = DEFAULT_SESSION_TIMEOUT,
        approval: Optional[TransactionApprovalSimulator] = None,
        tracker: Optional[TransactionTracker] = None,
    ):
        super().__init__()
        self.seed_vault = seed_vault
        self.session_timeout = session_timeout
        self.approval = approval or TransactionApprovalSimulator()
        self.tracker = tracker or TransactionTracker()
        self._sessions: Dict[str, MWASession] = {}
        self._timers = TimerRegistry("mwa-sessions")
        self._forwarders: List[Tuple[EventEmitter, str, Any]] = []
        self._setup_event_forwarding()

    # ------------------------------------------------------------------ #
    # Sessions
    # ------------------------------------------------------------------ #
    async def connect(self, dapp_identifier: str) -> MWASession:
        if not dapp_identifier or not dapp_identifier.strip():
            raise InvalidRequestError("Invalid dApp identifier provided")

        session = MWASession(session_id=generate_session_id(), dapp_identifier=dapp_identifier.strip())
        self._sessions[session.session_id] = session
        self._schedule_idle_timeout(session.session_id)

        logger.info("dApp %s connected (session %s)", session.dapp_identifier, session.session_id)
        self.emit("sessionConnected", {"session_id": session.session_id, "dapp_identifier": session.dapp_identifier})
        return session

    async def authorize(
        self, session: MWASession, request: Union[AuthorizeRequest, Dict[str, Any], None] = None
    ) -> AuthorizeResult:
        """
        Bind the session to the vault's most recently used wallet.

        Raises:
            SessionNotFoundError: If the session is unknown or disconnected.
            NoWalletsAvailableError: If the vault holds no wallet.
        """
        stored = self._require_session(session)
        self._touch(stored)
        if not isinstance(request, AuthorizeRequest):
            request = AuthorizeRequest.model_validate(request or {})

        try:
            wallets = await self.seed_vault.list_wallets()
            if not wallets:
                raise NoWalletsAvailableError(
                    "No wallets available for authorization", {"session_id": stored.session_id}
                )
        except (MWAError, SeedVaultError) as exc:
            self.emit(
                "authorizationFailed",
                {"session_id": stored.session_id, "dapp_identifier": stored.dapp_identifier, "error": str(exc)},
            )
            raise

        wallet = wallets[0]
        stored.authorized_public_key = wallet.public_key
        stored.authorized_at = utcnow()
        stored.permissions = list(request.features)

        logger.info("Session %s authorized for %s", stored.session_id, wallet.public_key)
        self.emit(
            "sessionAuthorized",
            {
                "session_id": stored.session_id,
                "dapp_identifier": stored.dapp_identifier,
                "public_key": wallet.public_key,
            },
        )
        return AuthorizeResult(
            public_key=wallet.public_key, account_label=wallet.profile.name, wallet_uri_base=WALLET_URI_BASE
        )

    async def disconnect(self, session: MWASession) -> None:
        stored = self._sessions.pop(session.session_id, None)
        if stored is None:
            return
        self._timers.cancel(stored.session_id)
        stored.connection_state = ConnectionState.DISCONNECTED
        session.connection_state = ConnectionState.DISCONNECTED

        logger.info("Session %s disconnected", stored.session_id)
        self.emit("sessionDisconnected", {"session_id": stored.session_id, "dapp_identifier": stored.dapp_identifier})

    async def get_active_sessions(self) -> List[MWASession]:
        return [s for s in self._sessions.values() if s.connection_state is ConnectionState.CONNECTED]

    async def get_session(self, session_id: str) -> Optional[MWASession]:
        return self._sessions.get(session_id)

    def get_session_transaction_logs(self, session_id: str) -> List[TransactionLogEntry]:
        session = self._sessions.get(session_id)
        if session is None:
            return []
        return self.tracker.get_dapp_transactions(session.dapp_identifier)

    def validate_transaction(self, transaction: Transaction) -> ValidationResult:
        return validate_transaction(transaction)

    # ------------------------------------------------------------------ #
    # Signing
    # ------------------------------------------------------------------ #
    async def sign_transactions(
        self, session: MWASession, transactions: Sequence[Transaction], auto_approve: bool = False
    ) -> List[SignResult]:
        """
        Validate, approve and sign each transaction independently.

        Args:
            session: An authorized session.
            transactions: Transactions to sign, processed in order.
            auto_approve: Skip the simulated prompt for every item.

        Returns:
            One ``SignResult`` per input, in input order.

        Raises:
            SessionNotFoundError: If the session is unknown or disconnected.
            SessionNotAuthorizedError: If ``authorize`` has not been called.
            InvalidRequestError: If ``transactions`` is empty.
        """
        stored = self._require_authorized(session)
        self._touch(stored)
        if not transactions:
            raise InvalidRequestError("No transactions provided", {"session_id": stored.session_id})

        try:
            wallet = await self._authorized_wallet(stored)
        except (MWAError, SeedVaultError) as exc:
            message = f"Failed to sign transactions: {exc}"
            logger.warning("Session %s: %s", stored.session_id, message)
            return [SignResult(error=message) for _ in transactions]

        results = []
        for index, transaction in enumerate(transactions):
            results.append(await self._process_transaction(stored, wallet, index, transaction, auto_approve))
        return results

    async def _process_transaction(
        self, session: MWASession, wallet: Wallet, index: int, transaction: Transaction, auto_approve: bool
    ) -> SignResult:
        transaction_id = generate_transaction_id(index)
        base_event = {
            "session_id": session.session_id,
            "dapp_identifier": session.dapp_identifier,
            "transaction_index": index,
        }
        try:
            validation = validate_transaction(transaction)
            if not validation.is_valid:
                raise TransactionValidationFailedError(
                    f"Transaction validation failed: {', '.join(validation.errors)}", {"errors": validation.errors}
                )

            self.tracker.create_transaction(
                transaction_id, wallet.id, session.dapp_identifier, transaction, validation.metadata
            )
            request = self.approval.create_approval_request(
                wallet.id, session.dapp_identifier, transaction, auto_approve=auto_approve, request_id=transaction_id
            )
            self.tracker.add_event(transaction_id, "approval_requested", {"request_id": request.id})
            approval = await self.approval.request_approval(request)
            self.tracker.add_event(
                transaction_id, "approval_result", {"approved": approval.approved, "reason": approval.reason}
            )
            if not approval.approved:
                raise TransactionRejectedError(
                    f"Transaction rejected: {approval.reason or 'User denied'}", {"reason": approval.reason}
                )

            self.tracker.update_status(transaction_id, TransactionStatus.APPROVED)
            self.emit("transactionApproved", {**base_event, "transaction_id": transaction_id})

            self.tracker.update_status(transaction_id, TransactionStatus.SIGNING)
            self.tracker.add_event(transaction_id, "signing_started")
            # Approval already happened above, so the vault must not prompt again.
            signing = await self.seed_vault.sign_transaction(wallet.id, transaction, auto_approve=True)
            signature = base58.b58encode(signing.signature).decode("ascii")
            self.tracker.update_status(transaction_id, TransactionStatus.SIGNED)
            self.tracker.add_signature(transaction_id, signature)

        except TransactionValidationFailedError as exc:
            logger.warning("Transaction %d from %s failed validation: %s", index, session.dapp_identifier, exc.message)
            self.emit("transactionValidationFailed", {**base_event, "errors": exc.context.get("errors", [])})
            return SignResult(error=exc.message)

        except TransactionRejectedError as exc:
            reason = exc.context.get("reason")
            self.tracker.update_status(transaction_id, TransactionStatus.REJECTED, {"reason": reason})
            logger.warning("Transaction %s rejected: %s", transaction_id, reason)
            self.emit("transactionRejected", {**base_event, "transaction_id": transaction_id, "reason": reason})
            return SignResult(error=exc.message)

        except Exception as exc:
            self._record_failure(transaction_id, exc)
            logger.warning("Transaction %s failed: %s", transaction_id, exc)
            self.emit(
                "transactionSigningFailed", {**base_event, "transaction_id": transaction_id, "error": str(exc)}
            )
            return SignResult(error=f"Failed to sign transaction: {exc}")

        logger.debug("Transaction %s signed by wallet %s", transaction_id, wallet.id)
        self.emit(
            "transactionSigned",
            {
                **base_event,
                "wallet_id": wallet.id,
                "transaction_id": transaction_id,
                "signature": signature,
                "metadata": validation.metadata,
            },
        )
        return SignResult(signed_transaction=signing.signed_transaction, signature=signing.signature)

    def _record_failure(self, transaction_id: str, exc: Exception) -> None:
        entry = self.tracker.get_transaction(transaction_id)
        if entry is None:
            return
        message = str(exc)
        if entry.status is TransactionStatus.PENDING:
            self.tracker.update_status(transaction_id, TransactionStatus.REJECTED, {"error": message})
        else:
            if entry.status is TransactionStatus.APPROVED:
                self.tracker.update_status(transaction_id, TransactionStatus.SIGNING)
            if entry.status is TransactionStatus.SIGNING:
                self.tracker.update_status(transaction_id, TransactionStatus.SIGNING_FAILED)
        self.tracker.add_error(transaction_id, message)

    async def sign_messages(self, session: MWASession, messages: Sequence[bytes]) -> List[SignResult]:
        """Sign raw messages with the session's wallet; one result per message, in order."""
        stored = self._require_authorized(session)
        self._touch(stored)
        if not messages:
            raise InvalidRequestError("No messages provided", {"session_id": stored.session_id})

        try:
            wallet = await self._authorized_wallet(stored)
        except (MWAError, SeedVaultError) as exc:
            message = f"Failed to sign messages: {exc}"
            return [SignResult(error=message) for _ in messages]

        results = []
        for index, payload in enumerate(messages):
            try:
                signing = await self.seed_vault.sign_message(wallet.id, payload, auto_approve=True)
            except Exception as exc:
                logger.warning("Message %d from %s failed: %s", index, stored.dapp_identifier, exc)
                self.emit(
                    "messageSigningFailed",
                    {
                        "session_id": stored.session_id,
                        "dapp_identifier": stored.dapp_identifier,
                        "message_index": index,
                        "error": str(exc),
                    },
                )
                results.append(SignResult(error=f"Failed to sign message: {exc}"))
                continue

            self.emit(
                "messageSigned",
                {
                    "session_id": stored.session_id,
                    "dapp_identifier": stored.dapp_identifier,
                    "wallet_id": wallet.id,
                    "signature": signing.signature.hex(),
                },
            )
            results.append(SignResult(signature=signing.signature))
        return results

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    async def close(self) -> None:
        """Disconnect every session and release all timers."""
        for session in list(self._sessions.values()):
            await self.disconnect(session)
        self._timers.cancel_all()
        for source, event, handler in self._forwarders:
            source.off(event, handler)
        self._forwarders.clear()
        self.approval.close()
        self.tracker.close()

    async def __aenter__(self) -> "MWAService":
        self.tracker.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _require_session(self, session: MWASession) -> MWASession:
        stored = self._sessions.get(session.session_id)
        if stored is None:
            raise SessionNotFoundError("Invalid session: session not found", {"session_id": session.session_id})
        if stored.connection_state is not ConnectionState.CONNECTED:
            raise SessionNotFoundError("Invalid session: not connected", {"session_id": session.session_id})
        return stored

    def _require_authorized(self, session: MWASession) -> MWASession:
        stored = self._require_session(session)
        if not stored.is_authorized:
            raise SessionNotAuthorizedError("Session not authorized", {"session_id": stored.session_id})
        return stored

    async def _authorized_wallet(self, session: MWASession) -> Wallet:
        wallets = await self.seed_vault.list_wallets()
        wallet = next((w for w in wallets if w.public_key == session.authorized_public_key), None)
        if wallet is None:
            raise SessionNotAuthorizedError(
                "Authorized wallet not found", {"public_key": session.authorized_public_key}
            )
        return wallet

    def _touch(self, session: MWASession) -> None:
        session.last_activity = utcnow()
        self._schedule_idle_timeout(session.session_id)

    def _schedule_idle_timeout(self, session_id: str) -> None:
        self._timers.schedule(session_id, self.session_timeout, self._expire_session, session_id)

    async def _expire_session(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is not None:
            logger.warning("Session %s idle for %ss, disconnecting", session_id, self.session_timeout)
            await self.disconnect(session)

    def _setup_event_forwarding(self) -> None:
        for source, forwards in ((self.approval, _APPROVAL_FORWARDS), (self.tracker, _TRACKER_FORWARDS)):
            for source_event, service_event in forwards:
                handler = functools.partial(self.emit, service_event)
                source.on(source_event, handler)
                self._forwarders.append((source, source_event, handler))
