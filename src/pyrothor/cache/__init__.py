"""Optional rule acceleration cache."""

from pyrothor.cache.rules import (
    CacheEntry,
    CompiledArtifact,
    FileRuleCache,
    NullRuleCache,
    RuleAccelerator,
    RuleCache,
    audit_rules,
    create_rule_cache,
)

__all__ = [
    "CacheEntry",
    "CompiledArtifact",
    "FileRuleCache",
    "NullRuleCache",
    "RuleAccelerator",
    "RuleCache",
    "audit_rules",
    "create_rule_cache",
]
