"""
Rule Set Loader

Loads global default rule sets from YAML seed files, validates them against
the rule body schema, and inserts any (jurisdiction, version) not yet in the
database. Fails fast with every error listed if any file is invalid.

Seed file format:

    jurisdiction: TX
    version: 1
    effective_from: 2024-01-01
    rules:
      scenarios: [...]
      validations: [...]
      computed_fields: {...}
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema
import yaml

from models import transaction, AuditEvent, ComplianceRuleSet
from services.audit_service import record_audit
from services.errors import ConfigurationError
from .rules import validate_rule_body
from .scoping import as_datetime

logger = logging.getLogger(__name__)

DEFAULT_SEED_DIR = Path(__file__).parent.parent.parent / 'compliance' / 'rulesets'


@dataclass(frozen=True)
class RuleSetSeed:
    jurisdiction: str
    version: int
    effective_from: datetime
    rules: Dict[str, Any]
    effective_to: Optional[datetime] = None
    source: str = ''


class RuleSetLoader:
    """
    Loader for global rule set seeds.

    Usage:
        seeds = RuleSetLoader.load_all()
        created = RuleSetLoader.seed_database()
    """

    @classmethod
    def load_all(cls, seed_dir: Path = None) -> List[RuleSetSeed]:
        """
        Load and validate every *.yml / *.yaml file in the seed directory.

        Raises:
            ConfigurationError with all file errors listed
        """
        seed_dir = Path(seed_dir) if seed_dir else DEFAULT_SEED_DIR
        if not seed_dir.exists():
            logger.warning(f"Rule set seed directory not found: {seed_dir}")
            return []

        yaml_files = sorted(list(seed_dir.glob('*.yml')) + list(seed_dir.glob('*.yaml')))
        seeds: List[RuleSetSeed] = []
        seen = set()
        errors = []

        for yaml_file in yaml_files:
            try:
                seed = cls._load_and_validate(yaml_file)
            except (ValueError, yaml.YAMLError) as e:
                errors.append(f"{yaml_file.name}: {e}")
                continue
            except jsonschema.ValidationError as e:
                errors.append(f"{yaml_file.name}: Schema validation failed: {e.message}")
                continue

            key = (seed.jurisdiction, seed.version)
            if key in seen:
                errors.append(f"{yaml_file.name}: Duplicate {seed.jurisdiction} v{seed.version}")
                continue
            seen.add(key)
            seeds.append(seed)

        if errors:
            error_msg = "Rule set seed errors:\n" + "\n".join(f"  - {e}" for e in errors)
            logger.error(error_msg)
            raise ConfigurationError(error_msg)

        logger.info(f"Loaded {len(seeds)} global rule set seed(s)")
        return seeds

    @classmethod
    def _load_and_validate(cls, path: Path) -> RuleSetSeed:
        raw = yaml.safe_load(path.read_text())
        if not raw:
            raise ValueError("Empty rule set file")
        if not isinstance(raw, dict):
            raise ValueError("Rule set file must be a mapping")

        jurisdiction = raw.get('jurisdiction')
        if not isinstance(jurisdiction, str) or len(jurisdiction) != 2:
            raise ValueError("'jurisdiction' must be a two-letter code")

        version = raw.get('version')
        if not isinstance(version, int) or version < 1:
            raise ValueError("'version' must be a positive integer")

        rules = raw.get('rules') or {}
        validate_rule_body(rules)

        return RuleSetSeed(
            jurisdiction=jurisdiction.upper(),
            version=version,
            effective_from=cls._parse_date(raw.get('effective_from'), 'effective_from'),
            effective_to=cls._parse_date(raw.get('effective_to'), 'effective_to', required=False),
            rules=rules,
            source=path.name,
        )

    @classmethod
    def _parse_date(cls, value, name: str, required: bool = True) -> Optional[datetime]:
        if value is None:
            if required:
                raise ValueError(f"'{name}' is required")
            return None
        if isinstance(value, (date, datetime)):
            return as_datetime(value)
        try:
            return datetime.fromisoformat(str(value))
        except ValueError:
            raise ValueError(f"'{name}' is not an ISO date: {value!r}")

    @classmethod
    def seed_database(cls, seed_dir: Path = None) -> int:
        """
        Insert global rule sets that are not stored yet.

        Returns:
            Number of rows created
        """
        created = 0
        for seed in cls.load_all(seed_dir):
            exists = ComplianceRuleSet.query.filter_by(
                jurisdiction=seed.jurisdiction,
                org_id=None,
                version=seed.version,
            ).first()
            if exists:
                continue

            with transaction() as session:
                rule_set = ComplianceRuleSet(
                    org_id=None,
                    jurisdiction=seed.jurisdiction,
                    version=seed.version,
                    effective_from=seed.effective_from,
                    effective_to=seed.effective_to,
                    rules_json=seed.rules,
                )
                session.add(rule_set)
                session.flush()
                record_audit(session, None, 'ComplianceRuleSet', rule_set.id, AuditEvent.CREATE,
                             after=rule_set.to_dict())
                logger.info(f"Seeded global rule set {seed.jurisdiction} v{seed.version} from {seed.source}")
            created += 1

        return created
