"""
Template resolution tests: scope priority, effective windows, soft delete.
"""

import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from conftest import make_template
from services.compliance import admin_service
from services.documents import TemplateResolver

AS_OF = datetime(2025, 6, 1)
ORG_ID = 7


class MockTemplate:
    """Candidate row for pure selection tests."""
    _next_id = 1

    def __init__(self, org_id=None, version=1, effective_from=datetime(2024, 1, 1), effective_to=None,
                 default_for_org=False, is_default=False, deleted_at=None):
        self.id = MockTemplate._next_id
        MockTemplate._next_id += 1
        self.org_id = org_id
        self.version = version
        self.effective_from = effective_from
        self.effective_to = effective_to
        self.default_for_org = default_for_org
        self.is_default = is_default
        self.deleted_at = deleted_at


def select(*candidates):
    return TemplateResolver.select_best_template(list(candidates), ORG_ID, AS_OF)


class TestSelection:

    def test_org_template_beats_any_global(self):
        org_template = MockTemplate(org_id=ORG_ID, version=1)
        global_template = MockTemplate(version=9, is_default=True, default_for_org=True)
        assert select(global_template, org_template) is org_template

    def test_global_used_without_active_org_template(self):
        global_template = MockTemplate(version=2)
        future_org = MockTemplate(org_id=ORG_ID, effective_from=datetime(2026, 1, 1))
        assert select(global_template, future_org) is global_template

    def test_other_organizations_are_ignored(self):
        foreign = MockTemplate(org_id=ORG_ID + 1, version=5, default_for_org=True)
        global_template = MockTemplate(version=1)
        assert select(foreign, global_template) is global_template

    def test_default_for_org_wins_over_version(self):
        newer = MockTemplate(org_id=ORG_ID, version=3)
        pinned = MockTemplate(org_id=ORG_ID, version=1, default_for_org=True)
        assert select(newer, pinned) is pinned

    def test_is_default_wins_over_version(self):
        newer = MockTemplate(version=3)
        default = MockTemplate(version=2, is_default=True)
        assert select(newer, default) is default

    def test_highest_version_then_latest_effective_from(self):
        v1 = MockTemplate(org_id=ORG_ID, version=1)
        v2_early = MockTemplate(org_id=ORG_ID, version=2, effective_from=datetime(2024, 1, 1))
        v2_late = MockTemplate(org_id=ORG_ID, version=2, effective_from=datetime(2025, 1, 1))
        assert select(v1, v2_early, v2_late) is v2_late

    def test_effective_to_is_inclusive(self):
        ends_today = MockTemplate(org_id=ORG_ID, effective_to=AS_OF)
        assert select(ends_today) is ends_today

    def test_expired_and_deleted_are_inactive(self):
        expired = MockTemplate(org_id=ORG_ID, effective_to=datetime(2025, 1, 1))
        deleted = MockTemplate(org_id=ORG_ID, deleted_at=datetime(2025, 2, 1))
        assert select(expired, deleted) is None

    def test_no_candidates(self):
        assert select() is None


class TestResolveFromDatabase:

    def test_scope_must_match_exactly(self, org):
        make_template('BUYERS_ORDER', jurisdiction='CA')
        make_template('BUYERS_ORDER', deal_type='FINANCE')
        assert TemplateResolver.resolve(org.id, 'BUYERS_ORDER', 'TX', 'CASH', AS_OF) is None

    def test_soft_deleted_org_template_falls_back_to_global(self, org, user):
        global_template = make_template('BUYERS_ORDER', version=4)
        org_template = make_template('BUYERS_ORDER', org_id=org.id)

        assert TemplateResolver.resolve(org.id, 'BUYERS_ORDER', 'TX', 'CASH', AS_OF).id == org_template.id

        admin_service.delete_template(org.id, user.id, org_template.id)

        resolved = TemplateResolver.resolve(org.id, 'BUYERS_ORDER', 'TX', 'CASH', AS_OF)
        assert resolved.id == global_template.id

    def test_as_of_selects_window(self, org):
        old = make_template('PRIVACY_NOTICE', version=1, effective_from=datetime(2023, 1, 1),
                            effective_to=datetime(2024, 12, 31))
        new = make_template('PRIVACY_NOTICE', version=2, effective_from=datetime(2025, 1, 1))

        assert TemplateResolver.resolve(org.id, 'PRIVACY_NOTICE', 'TX', 'CASH', datetime(2024, 6, 1)).id == old.id
        assert TemplateResolver.resolve(org.id, 'PRIVACY_NOTICE', 'TX', 'CASH', AS_OF).id == new.id
