"""Controller that keeps Neo4j Aura instances converged with AuraInstance resources."""

__version__ = "0.1.0"
