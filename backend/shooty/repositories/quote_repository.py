# backend/shooty/repositories/quote_repository.py
"""
Quote Repository for the Shooty booking engine.

Data access for quotes and their line items, including the
compare-and-set status update used by acceptance so that two concurrent
acceptances of the same quote cannot both succeed.
"""

from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session, selectinload

from ..core.enums import QuoteStatus
from ..core.exceptions import RepositoryException
from ..models.quote import Quote, QuoteLineItem
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class QuoteRepository(BaseRepository[Quote]):
    """Repository for quote data access."""

    def __init__(self, db: Session):
        super().__init__(db, Quote)
        self.logger = logging.getLogger(__name__)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(selectinload(Quote.line_items))

    def create_with_line_items(
        self, line_items: Sequence[Dict[str, Any]], **quote_fields: Any
    ) -> Quote:
        """
        Create a quote together with its line items in one flush.

        Args:
            line_items: Dicts with kind, label and amount, in display order
            **quote_fields: Quote column values (total already computed)
        """
        try:
            quote = Quote(**quote_fields)
            quote.line_items = [
                QuoteLineItem(position=position, **item) for position, item in enumerate(line_items)
            ]
            self.db.add(quote)
            self.db.flush()
            return quote
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to create quote: {str(e)}")
            raise RepositoryException(f"Failed to create quote: {str(e)}")

    def replace_line_items(
        self, quote: Quote, line_items: Sequence[Dict[str, Any]], total: Decimal
    ) -> Quote:
        """Swap all line items of a quote and store the recomputed total."""
        try:
            quote.line_items = [
                QuoteLineItem(position=position, **item) for position, item in enumerate(line_items)
            ]
            quote.total = total
            self.db.flush()
            return quote
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to replace line items for quote {quote.id}: {str(e)}")
            raise RepositoryException(f"Failed to update quote: {str(e)}")

    def compare_and_set_status(
        self,
        quote_id: str,
        expected: QuoteStatus,
        new_status: QuoteStatus,
        **fields: Any,
    ) -> bool:
        """
        Move a quote from ``expected`` to ``new_status`` in a single UPDATE.

        Returns:
            True if this call performed the change, False if the quote was
            not in ``expected`` status anymore
        """
        try:
            values = {"status": new_status.value, **fields}
            updated = (
                self.db.query(Quote)
                .filter(Quote.id == quote_id, Quote.status == expected.value)
                .update(values, synchronize_session="fetch")
            )
            return updated == 1
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to update status for quote {quote_id}: {str(e)}")
            raise RepositoryException(f"Failed to update quote status: {str(e)}")

    def list_for_demand(self, demand_id: str) -> List[Quote]:
        """Quotes answering a demand, cheapest first."""
        query = (
            self._apply_eager_loading(self._build_query())
            .filter(Quote.demand_id == demand_id)
            .order_by(Quote.total.asc(), Quote.created_at.asc())
        )
        return self._execute_query(query)

    def list_for_provider(
        self, provider_id: str, status: Optional[QuoteStatus] = None
    ) -> List[Quote]:
        """Quotes a provider sent, newest first."""
        return self._list_for_party(Quote.provider_id, provider_id, status)

    def list_for_client(
        self, client_id: str, status: Optional[QuoteStatus] = None
    ) -> List[Quote]:
        """Quotes a client received, newest first."""
        return self._list_for_party(Quote.client_id, client_id, status)

    def _list_for_party(
        self, column: Any, user_id: str, status: Optional[QuoteStatus]
    ) -> List[Quote]:
        query = self._apply_eager_loading(self._build_query()).filter(column == user_id)
        if status is not None:
            query = query.filter(Quote.status == status.value)
        return self._execute_query(query.order_by(Quote.created_at.desc(), Quote.id.desc()))

    def count_by_status_for_provider(self, provider_id: str) -> Dict[str, int]:
        """Number of quotes per status for a provider."""
        try:
            rows = (
                self.db.query(Quote.status, func.count(Quote.id))
                .filter(Quote.provider_id == provider_id)
                .group_by(Quote.status)
                .all()
            )
            return {status: count for status, count in rows}
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to count quotes for provider {provider_id}: {str(e)}")
            raise RepositoryException(f"Failed to count quotes: {str(e)}")

    def accepted_revenue_for_provider(self, provider_id: str) -> Decimal:
        query = self.db.query(func.coalesce(func.sum(Quote.total), 0)).filter(
            Quote.provider_id == provider_id,
            Quote.status == QuoteStatus.ACCEPTED.value,
        )
        return Decimal(str(self._execute_scalar(query)))
