"""Adversarial loop controller and its ledger."""

from crucible.loop.controller import AdversarialLoop
from crucible.loop.ledger import LoopLedger, read_review

__all__ = ["AdversarialLoop", "LoopLedger", "read_review"]
