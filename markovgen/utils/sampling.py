"""Random selection helpers backed by a torch random generator."""

from typing import Optional, Sequence, Tuple, TypeVar

import torch


T = TypeVar('T')


def make_generator(seed: Optional[int] = None) -> torch.Generator:
    """Create a CPU random generator.

    With seed=None the generator is seeded from OS entropy, otherwise it is
    seeded deterministically.
    """
    generator = torch.Generator()
    if seed is None:
        generator.seed()
    else:
        generator.manual_seed(seed)
    return generator


def uniform_index(n: int, generator: torch.Generator) -> int:
    """Uniform integer in [0, n)."""
    if n < 1:
        raise ValueError("Cannot sample from an empty range")
    return int(torch.randint(n, (1,), generator=generator).item())


def uniform_choice(items: Sequence[T], generator: torch.Generator) -> T:
    """Pick one item uniformly at random."""
    return items[uniform_index(len(items), generator)]


def weighted_choice(
    weighted: Sequence[Tuple[T, int]],
    generator: torch.Generator,
) -> T:
    """Pick an item with probability proportional to its count.

    Draws an integer in [0, total) and returns the first item whose
    cumulative count exceeds the draw.
    """
    if not weighted:
        raise ValueError("Cannot sample from an empty distribution")
    counts = torch.tensor([count for _, count in weighted], dtype=torch.long)
    cumulative = torch.cumsum(counts, dim=0)
    total = int(cumulative[-1].item())
    if total < 1:
        raise ValueError("Counts must sum to at least 1")
    draw = torch.randint(total, (1,), generator=generator)
    idx = int(torch.searchsorted(cumulative, draw, right=True).item())
    return weighted[idx][0]
