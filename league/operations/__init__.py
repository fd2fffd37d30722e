"""
Operations Layer

Business logic operations that compose database access, scoring and
services into complete workflows.

Architecture:
- Database layer: models, sessions and user CRUD
- Utils layer: pure scoring and ranking logic
- Services layer: stats aggregation and ranking queries
- Operations layer: group, game catalog and match workflows

Each operations module focuses on a specific domain:
- GroupOperations: Groups, invite codes and member roles
- GameOperations: Per-group game catalog
- MatchOperations: Match lifecycle and result processing
"""
