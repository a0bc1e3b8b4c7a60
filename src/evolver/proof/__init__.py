"""Trace folding, proof bundles and their verifier."""

from .affine import AffineTuple, CheckpointTree, fold, fold_left, fold_right
from .bundle import ProofBundle, build_bundle
from .verifier import Verifier, replay, verify

__all__ = [
    "AffineTuple",
    "CheckpointTree",
    "ProofBundle",
    "Verifier",
    "build_bundle",
    "fold",
    "fold_left",
    "fold_right",
    "replay",
    "verify",
]
