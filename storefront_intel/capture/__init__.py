"""Event capture layer — observed UI state in, deduplicated domain events out."""

from .cart import CartDelta, CartLine, CartTracker, apply_cart_delta, compute_cart_delta  # noqa: F401
from .checkout import CaptureSignal, CheckoutTracker, is_valid_email  # noqa: F401
from .engagement import EngagementTimer, EngagementTracker, scroll_depth  # noqa: F401
from .session import CaptureSession, SessionRegistry  # noqa: F401
