"""
Template Resolution

Picks the single template to render for (org, doc type, jurisdiction,
deal type, as-of date). An active organization template always beats
every global one for the same scope; within the winning pool the order is
default_for_org, is_default, version, effective_from, all descending.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from models import DocumentTemplate
from services.compliance.scoping import select_best, template_priority

logger = logging.getLogger(__name__)


class TemplateResolver:

    @classmethod
    def select_best_template(cls, candidates: Iterable[DocumentTemplate], org_id,
                             as_of) -> Optional[DocumentTemplate]:
        """Pure selection over caller-supplied, unfiltered candidates."""
        return select_best(candidates, org_id, as_of, template_priority)

    @classmethod
    def load_candidates(cls, org_id, doc_type: str, jurisdiction: str,
                        deal_type: str) -> List[DocumentTemplate]:
        """Org and global rows for the exact scope, soft-deleted excluded."""
        return DocumentTemplate.query.filter(
            DocumentTemplate.doc_type == doc_type,
            DocumentTemplate.jurisdiction == jurisdiction,
            DocumentTemplate.deal_type == deal_type,
            DocumentTemplate.deleted_at.is_(None),
            (DocumentTemplate.org_id == org_id) | (DocumentTemplate.org_id.is_(None)),
        ).all()

    @classmethod
    def resolve(cls, org_id, doc_type: str, jurisdiction: str, deal_type: str,
                as_of: datetime = None) -> Optional[DocumentTemplate]:
        as_of = as_of or datetime.utcnow()
        candidates = cls.load_candidates(org_id, doc_type, jurisdiction, deal_type)
        template = cls.select_best_template(candidates, org_id, as_of)
        if template is None:
            logger.debug(f"No active template for {doc_type} {jurisdiction}/{deal_type} (org {org_id})")
        return template
