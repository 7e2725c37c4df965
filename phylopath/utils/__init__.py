"""
Utility subpackage for phylopath:
- config_loader   → YAML loader, defaults & JSON overrides
- logging_utils   → unified logger setup
"""
