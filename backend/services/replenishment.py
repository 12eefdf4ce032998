"""
Moteur de réapprovisionnement automatique.

Un run = une passe synchrone :
    RuleEvaluator -> DuplicateGuard -> OrderAggregator -> OrderPersister -> RunReporter

Propriétés :
- relancer le moteur sans changement de stock/règles ne crée aucune commande
  (DuplicateGuard en pré-filtre, index unique partiel en garde définitive)
- un échec d'écriture chez un fournisseur n'annule pas les autres
- un échec de lecture annule tout le run, sans aucune écriture
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.core.config import settings
from backend.app.core.exceptions import DuplicateConflict, PersistenceFailure, ReadFailure, ReplenishmentError
from backend.app.schemas.replenishment import RunResult
from backend.services.stores import (
    OrderStore,
    ProductStock,
    RuleCatalog,
    RuleView,
    StockSnapshot,
    db_error_reason,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class TriggeredLine:
    tenant_id: int
    rule_id: int
    product_id: int
    provider_id: int
    provider_name: str
    qty: int
    requires_approval: bool
    # snapshot produit au moment de l'évaluation
    unit_price: Decimal
    product_name: str
    product_code: str

    @property
    def claim_key(self) -> tuple[int, int]:
        return (self.provider_id, self.product_id)


@dataclass(frozen=True)
class OrderDraft:
    tenant_id: int
    provider_id: int
    provider_name: str
    generation_date: date
    requires_approval: bool
    lines: tuple[TriggeredLine, ...]

    @property
    def total_estimate(self) -> Decimal:
        total = sum((line.unit_price * line.qty for line in self.lines), Decimal("0"))
        return total.quantize(CENT)

    @property
    def notes(self) -> str:
        return f"Auto-generated order - {len(self.lines)} product(s) below reorder threshold"


@dataclass
class Evaluation:
    rules_evaluated: int = 0
    lines: list[TriggeredLine] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


@dataclass
class PersistOutcome:
    provider_id: int
    order_id: int | None = None
    skipped_duplicate: int = 0
    error: str | None = None


# ---------- RULE EVALUATOR ----------
def evaluate_rules(products: dict[int, ProductStock], rules: list[RuleView]) -> Evaluation:
    """
    Une TriggeredLine par règle active dont le produit est sous le seuil
    (stock < trigger_stock). La quantité est toujours reorder_qty.
    """
    evaluation = Evaluation(rules_evaluated=len(rules))

    for rule in sorted(rules, key=lambda r: r.id):
        product = products.get(rule.product_id)
        if product is None or product.tenant_id != rule.tenant_id:
            msg = f"Rule {rule.id} skipped: product {rule.product_id} not found for tenant {rule.tenant_id}"
            logger.warning(msg)
            evaluation.warnings.append(msg)
            continue

        if rule.provider_tenant_id != rule.tenant_id:
            msg = f"Rule {rule.id} skipped: provider {rule.provider_id} belongs to another tenant"
            logger.warning(msg)
            evaluation.warnings.append(msg)
            continue

        if rule.trigger_stock == 0:
            # stock >= 0 : la règle ne peut jamais se déclencher
            msg = f"Rule {rule.id} ({product.code}) has trigger_stock=0 and will never trigger"
            logger.warning(msg)
            evaluation.warnings.append(msg)
            continue

        if product.stock < rule.trigger_stock:
            logger.info(
                "Low stock detected: %s (%s < %s), reorder %s from provider %s",
                product.code,
                product.stock,
                rule.trigger_stock,
                rule.reorder_qty,
                rule.provider_id,
            )
            evaluation.lines.append(
                TriggeredLine(
                    tenant_id=rule.tenant_id,
                    rule_id=rule.id,
                    product_id=product.id,
                    provider_id=rule.provider_id,
                    provider_name=rule.provider_name,
                    qty=rule.reorder_qty,
                    requires_approval=rule.requires_approval,
                    unit_price=product.unit_price,
                    product_name=product.name,
                    product_code=product.code,
                )
            )

    return evaluation


# ---------- DUPLICATE GUARD ----------
class DuplicateGuard:
    """
    Pré-filtre : retire les lignes déjà couvertes par une commande ouverte
    (pending_review / sent) du même jour pour la même paire fournisseur/produit.
    Best-effort : la garde définitive est l'index unique partiel en base.
    """

    def __init__(self, store: OrderStore):
        self.store = store

    def filter(
        self,
        lines: list[TriggeredLine],
        *,
        tenant_id: int,
        generation_date: date,
    ) -> tuple[list[TriggeredLine], int]:
        claimed = set(self.store.open_claims(tenant_id, generation_date))
        kept: list[TriggeredLine] = []
        skipped = 0

        for line in lines:
            if line.claim_key in claimed:
                logger.info(
                    "Skipping product %s for provider %s: already ordered on %s",
                    line.product_code,
                    line.provider_id,
                    generation_date.isoformat(),
                )
                skipped += 1
                continue
            claimed.add(line.claim_key)
            kept.append(line)

        return kept, skipped


# ---------- ORDER AGGREGATOR ----------
def aggregate_by_provider(lines: list[TriggeredLine], *, generation_date: date) -> list[OrderDraft]:
    """Un brouillon par (tenant, fournisseur), lignes triées par product_id."""
    grouped: dict[tuple[int, int], list[TriggeredLine]] = {}
    for line in lines:
        grouped.setdefault((line.tenant_id, line.provider_id), []).append(line)

    drafts = []
    for (tenant_id, provider_id), provider_lines in sorted(grouped.items()):
        provider_lines.sort(key=lambda l: l.product_id)
        drafts.append(
            OrderDraft(
                tenant_id=tenant_id,
                provider_id=provider_id,
                provider_name=provider_lines[0].provider_name,
                generation_date=generation_date,
                # fusion conservatrice : une seule règle avec approbation suffit
                requires_approval=any(l.requires_approval for l in provider_lines),
                lines=tuple(provider_lines),
            )
        )
    return drafts


# ---------- ORDER PERSISTER ----------
class OrderPersister:
    """
    Écrit chaque brouillon indépendamment. Une violation de l'index unique
    (run concurrent) n'est pas une erreur : les lignes déjà couvertes sont
    comptées en doublon et le reste du brouillon est réessayé.
    """

    def __init__(self, store: OrderStore):
        self.store = store

    def persist(self, drafts: list[OrderDraft]) -> list[PersistOutcome]:
        return [self._persist_one(draft) for draft in drafts]

    def _persist_one(self, draft: OrderDraft) -> PersistOutcome:
        outcome = PersistOutcome(provider_id=draft.provider_id)
        remaining = list(draft.lines)

        while remaining:
            attempt = replace(
                draft,
                lines=tuple(remaining),
                requires_approval=any(l.requires_approval for l in remaining),
            )
            try:
                order = self.store.insert_order(attempt)
            except IntegrityError as exc:
                try:
                    covered = self._covered_lines(attempt)
                except ReadFailure as read_exc:
                    outcome.error = self._error_message(draft, read_exc)
                    return outcome
                if not covered:
                    outcome.error = self._error_message(draft, exc)
                    return outcome

                conflict = DuplicateConflict(
                    details={"provider_id": draft.provider_id, "product_ids": [l.product_id for l in covered]}
                )
                logger.info("%s: %s", conflict, conflict.details)
                outcome.skipped_duplicate += len(covered)
                covered_ids = {l.product_id for l in covered}
                remaining = [l for l in remaining if l.product_id not in covered_ids]
                continue
            except (SQLAlchemyError, PersistenceFailure) as exc:
                outcome.error = self._error_message(draft, exc)
                return outcome

            outcome.order_id = int(order.id)
            logger.info(
                "Generated order %s for provider %s (%s line(s), total %s)",
                outcome.order_id,
                draft.provider_name,
                len(attempt.lines),
                attempt.total_estimate,
            )
            return outcome

        return outcome

    def _covered_lines(self, draft: OrderDraft) -> list[TriggeredLine]:
        claimed = self.store.open_claims(draft.tenant_id, draft.generation_date)
        return [l for l in draft.lines if l.claim_key in claimed]

    @staticmethod
    def _error_message(draft: OrderDraft, exc: Exception) -> str:
        # errors[] sort par le trigger HTTP : jamais la requête SQL ni ses paramètres
        if isinstance(exc, ReplenishmentError):
            reason = exc.message
        elif isinstance(exc, SQLAlchemyError):
            reason = db_error_reason(exc)
        else:
            reason = type(exc).__name__
        failure = PersistenceFailure(reason)
        msg = f"Could not create order for provider {draft.provider_name} ({draft.provider_id}): {failure.message}"
        logger.error("%s", msg, exc_info=exc)
        return msg


# ---------- RUN REPORTER ----------
class RunReporter:
    def report(
        self,
        *,
        evaluation: Evaluation,
        skipped_by_guard: int,
        outcomes: list[PersistOutcome],
        finished_at: datetime,
    ) -> RunResult:
        order_ids = [o.order_id for o in outcomes if o.order_id is not None]
        errors = [o.error for o in outcomes if o.error]
        skipped = skipped_by_guard + sum(o.skipped_duplicate for o in outcomes)

        if evaluation.rules_evaluated == 0:
            message = "No active reorder rules"
        else:
            message = f"Generated {len(order_ids)} order(s) from {evaluation.rules_evaluated} active rule(s)"

        return RunResult(
            success=True,
            rules_evaluated=evaluation.rules_evaluated,
            triggered=len(evaluation.lines),
            skipped_duplicate=skipped,
            orders_created=len(order_ids),
            order_ids=order_ids,
            errors=errors,
            warnings=list(evaluation.warnings),
            message=message,
            timestamp=finished_at,
        )

    def report_failure(self, exc: ReadFailure, *, finished_at: datetime) -> RunResult:
        return RunResult(
            success=False,
            errors=[exc.message],
            message=f"Replenishment run aborted: {exc.message}",
            timestamp=finished_at,
        )


# ---------- RUNNER ----------
def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReplenishmentRunner:
    """Point d'entrée : une invocation = un run complet, synchrone."""

    def __init__(
        self,
        db: Session,
        *,
        snapshot: StockSnapshot | None = None,
        catalog: RuleCatalog | None = None,
        store: OrderStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.snapshot = snapshot or StockSnapshot(db)
        self.catalog = catalog or RuleCatalog(db)
        self.store = store or OrderStore(db)
        self.guard = DuplicateGuard(self.store)
        self.persister = OrderPersister(self.store)
        self.reporter = RunReporter()
        self.clock = clock

    def generation_date(self, tz_name: str, now: datetime) -> date:
        try:
            tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r, using %s", tz_name, settings.DEFAULT_TENANT_TIMEZONE)
            tz = ZoneInfo(settings.DEFAULT_TENANT_TIMEZONE)
        return now.astimezone(tz).date()

    def run(self, tenant_id: int | None = None) -> RunResult:
        now = self.clock()
        logger.info(
            "Starting replenishment run (tenant=%s) at %s",
            tenant_id if tenant_id is not None else "all",
            now.isoformat(),
        )

        # ---------- LECTURES (tout ou rien) ----------
        try:
            tenants = self.snapshot.tenant_timezones(tenant_id)
            products = self.snapshot.load(tenant_id)
            rules = self.catalog.enabled_rules(tenant_id)
            evaluation = evaluate_rules(products, rules)

            drafts: list[OrderDraft] = []
            skipped_by_guard = 0
            for tid in sorted(tenants):
                tenant_lines = [l for l in evaluation.lines if l.tenant_id == tid]
                if not tenant_lines:
                    continue
                gen_date = self.generation_date(tenants[tid], now)
                kept, skipped = self.guard.filter(tenant_lines, tenant_id=tid, generation_date=gen_date)
                skipped_by_guard += skipped
                drafts.extend(aggregate_by_provider(kept, generation_date=gen_date))
        except ReadFailure as exc:
            logger.error("Replenishment run aborted: %s", exc)
            return self.reporter.report_failure(exc, finished_at=self.clock())

        # ---------- ÉCRITURES (isolées par fournisseur) ----------
        outcomes = self.persister.persist(drafts)

        result = self.reporter.report(
            evaluation=evaluation,
            skipped_by_guard=skipped_by_guard,
            outcomes=outcomes,
            finished_at=self.clock(),
        )
        logger.info(
            "Replenishment run done: %s (triggered=%s, skipped_duplicate=%s, errors=%s)",
            result.message,
            result.triggered,
            result.skipped_duplicate,
            len(result.errors),
        )
        return result
