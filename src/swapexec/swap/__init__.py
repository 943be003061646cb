"""Swap transaction preparation, submission and confirmation.

Provides:
- TransactionBuilder: decode, compute budget injection, signing
- Submission strategies and the ConfirmationEngine
- Received amount extraction and wallet loading

The SwapExecutor lives in swapexec.swap.executor.
"""

from swapexec.swap.builder import (
    SignedTransaction,
    TransactionBuilder,
    UnsignedTransaction,
    derive_compute_unit_limit,
)
from swapexec.swap.confirmation import (
    ConfirmationEngine,
    ConfirmationOutcome,
    OutcomeStatus,
    SubmissionHandle,
)
from swapexec.swap.extractor import extract_received_amount
from swapexec.swap.submission import (
    BundleRelaySubmission,
    DirectSubmission,
    SubmissionStrategy,
    create_submission_strategy,
)
from swapexec.swap.wallet import keypair_from_bytes, load_wallet

__all__ = [
    # Builder
    "TransactionBuilder",
    "UnsignedTransaction",
    "SignedTransaction",
    "derive_compute_unit_limit",
    # Confirmation
    "ConfirmationEngine",
    "ConfirmationOutcome",
    "OutcomeStatus",
    "SubmissionHandle",
    # Submission
    "SubmissionStrategy",
    "DirectSubmission",
    "BundleRelaySubmission",
    "create_submission_strategy",
    # Extraction and wallet
    "extract_received_amount",
    "load_wallet",
    "keypair_from_bytes",
]
