# Overview: Builds the service graph around one injected session.

from __future__ import annotations

from flask import current_app

from ..config import CoreSettings
from ..time_utils import utcnow
from .events import EventNotifier
from .order_service import OrderLedger
from .payment_service import PaymentEvidenceMatcher
from .pricing_service import CatalogPriceResolver
from .recipe_service import RecipeBook
from .status_service import OrderStatusMachine
from .stock_service import InventoryEngine


class FulfillmentCore:
    """
    One place that wires the services together.

    Nothing below reaches for a module-level session: whatever session is
    passed here (Flask-SQLAlchemy's scoped session in the app, a plain
    Session in scripts) is the one every service writes through.
    """

    def __init__(self, session, *, settings: CoreSettings | None = None, notifier=None, slip_reader=None, clock=utcnow):
        self.session = session
        self.settings = settings or CoreSettings()
        self.notifier = notifier if notifier is not None else EventNotifier()
        self.clock = clock

        self.recipes = RecipeBook(session)
        self.prices = CatalogPriceResolver(session, recipes=self.recipes)
        self.stock = InventoryEngine(session, self.recipes, notifier=self.notifier, clock=clock)
        self.status = OrderStatusMachine(
            session, self.stock, notifier=self.notifier, clock=clock, settings=self.settings
        )
        self.ledger = OrderLedger(
            session, self.prices, notifier=self.notifier, settings=self.settings, clock=clock
        )
        self.payments = PaymentEvidenceMatcher(
            session,
            slip_reader,
            self.status,
            notifier=self.notifier,
            settings=self.settings,
            clock=clock,
        )


def get_core() -> FulfillmentCore:
    """The app's FulfillmentCore (set up by create_app)."""
    return current_app.extensions["fulfillment"]
