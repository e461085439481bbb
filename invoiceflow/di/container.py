"""Dependency injection container for workflow services."""
from typing import Optional

from invoiceflow.core.audit import AuditRecorder
from invoiceflow.core.database import InvoiceflowDB
from invoiceflow.core.event_bus import EventBus
from invoiceflow.services.approval_engine import ApprovalEngine
from invoiceflow.services.approval_rules import ApprovalRuleService
from invoiceflow.services.companies import CompanyService
from invoiceflow.services.dashboard import DashboardService
from invoiceflow.services.extraction import ExtractionClient
from invoiceflow.services.intake import IntakeService
from invoiceflow.services.invoice_lifecycle import InvoiceLifecycle
from invoiceflow.services.ledger import LedgerService
from invoiceflow.services.notifications import NotificationService
from invoiceflow.services.rule_resolver import RuleResolver
from invoiceflow.services.storage import LocalObjectStorage
from invoiceflow.services.users import UserService


class ServiceContainer:
    """Owns the store handle and builds every service around it."""

    def __init__(
        self,
        db: InvoiceflowDB,
        storage: Optional[LocalObjectStorage] = None,
        extraction: Optional[ExtractionClient] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.db = db
        self.events = events or EventBus()
        self._storage = storage
        self._extraction = extraction
        self._audit = None
        self._resolver = None
        self._ledger = None
        self._notifications = None
        self._engine = None
        self._lifecycle = None
        self._rules = None
        self._companies = None
        self._users = None
        self._dashboard = None
        self._intake = None

    def audit(self) -> AuditRecorder:
        if not self._audit:
            self._audit = AuditRecorder(self.db)
        return self._audit

    def resolver(self) -> RuleResolver:
        if not self._resolver:
            self._resolver = RuleResolver(self.db)
        return self._resolver

    def ledger(self) -> LedgerService:
        if not self._ledger:
            self._ledger = LedgerService(self.db)
        return self._ledger

    def notifications(self) -> NotificationService:
        if not self._notifications:
            self._notifications = NotificationService(self.db)
        return self._notifications

    def engine(self) -> ApprovalEngine:
        if not self._engine:
            self._engine = ApprovalEngine(
                self.db,
                resolver=self.resolver(),
                ledger=self.ledger(),
                notifications=self.notifications(),
                audit=self.audit(),
                events=self.events,
            )
        return self._engine

    def lifecycle(self) -> InvoiceLifecycle:
        if not self._lifecycle:
            self._lifecycle = InvoiceLifecycle(self.db, self.engine(), self.audit(), self.events)
        return self._lifecycle

    def rules(self) -> ApprovalRuleService:
        if not self._rules:
            self._rules = ApprovalRuleService(self.db, self.resolver(), self.audit(), self.events)
        return self._rules

    def companies(self) -> CompanyService:
        if not self._companies:
            self._companies = CompanyService(self.db, self.audit(), self.events)
        return self._companies

    def users(self) -> UserService:
        if not self._users:
            self._users = UserService(self.db, self.audit(), self.events)
        return self._users

    def dashboard(self) -> DashboardService:
        if not self._dashboard:
            self._dashboard = DashboardService(self.db)
        return self._dashboard

    def storage(self) -> LocalObjectStorage:
        if not self._storage:
            self._storage = LocalObjectStorage()
        return self._storage

    def extraction(self) -> ExtractionClient:
        if not self._extraction:
            self._extraction = ExtractionClient()
        return self._extraction

    def intake(self) -> IntakeService:
        if not self._intake:
            self._intake = IntakeService(self.db, self.storage(), self.extraction(), self.lifecycle())
        return self._intake
