"""ChimpEvo: Wright-Fisher simulation of a coat-colour locus.

A discrete-generation, individual-based model of one biallelic locus
(A dominant dark coat, a recessive light coat) coupling:
  - Viability selection on genotype fitnesses
  - Random mating with genetic drift in a finite population
  - Symmetric A↔a mutation
  - Gene flow from a balanced migrant pool
  - A deterministic infinite-population recursion as baseline
  - Scripted events (bottleneck, sweep, radiation, founder)
"""

__version__ = "0.1.0"
