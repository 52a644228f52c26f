from typing import List, Optional, Union

import numpy as np
import torch

# Number of set bits for every byte value
_POPCOUNT_TABLE = torch.tensor([bin(i).count("1") for i in range(256)], dtype=torch.int64)


class Match:
    """Represents a match between two descriptors."""

    def __init__(self, query_idx: int, train_idx: int, distance: float):
        """
        Initialize a match.

        Args:
            query_idx: Index of the query descriptor
            train_idx: Index of the train descriptor
            distance: Distance between the descriptors
        """
        self.query_idx = query_idx
        self.train_idx = train_idx
        self.distance = distance

    def __repr__(self) -> str:
        return f"Match(query_idx={self.query_idx}, train_idx={self.train_idx}, distance={self.distance:.4f})"


def _as_tensor(descriptors: Union[np.ndarray, torch.Tensor]) -> torch.Tensor:
    if isinstance(descriptors, torch.Tensor):
        tensor = descriptors
    else:
        tensor = torch.from_numpy(np.ascontiguousarray(descriptors))
    if tensor.dim() == 1:
        tensor = tensor.unsqueeze(0)
    return tensor


class BruteForceMatcher:
    """
    Brute-force nearest neighbor matcher.

    Binary descriptors (ORB, BRISK) are compared with the Hamming distance,
    floating point descriptors (SIFT) with the Euclidean distance.
    """

    def __init__(self, max_distance: float = float("inf"), binary: bool = True):
        """
        Initialize matcher.

        Args:
            max_distance: Matches are accepted only below this distance
            binary: Whether descriptors are binary strings packed in uint8
        """
        self.max_distance = max_distance
        self.binary = binary

    def distances(
        self,
        query: Union[np.ndarray, torch.Tensor],
        train: Union[np.ndarray, torch.Tensor],
    ) -> torch.Tensor:
        """
        Compute the full distance matrix.

        Args:
            query: Query descriptors (N, D)
            train: Train descriptors (M, D)

        Returns:
            Distance matrix (N, M)
        """
        query = _as_tensor(query)
        train = _as_tensor(train)

        if query.shape[1] != train.shape[1]:
            raise ValueError(
                f"Descriptor size mismatch: {query.shape[1]} vs {train.shape[1]}"
            )

        if self.binary:
            xor = torch.bitwise_xor(
                query.to(torch.uint8).unsqueeze(1), train.to(torch.uint8).unsqueeze(0)
            )
            return _POPCOUNT_TABLE[xor.long()].sum(dim=2).float()

        return torch.cdist(query.float(), train.float())

    def match_best(
        self,
        query_descriptor: Union[np.ndarray, torch.Tensor],
        train_descriptors: Union[np.ndarray, torch.Tensor, List[np.ndarray]],
    ) -> Optional[Match]:
        """
        Find the nearest train descriptor to a single query descriptor.

        Args:
            query_descriptor: Query descriptor (D,) or (1, D)
            train_descriptors: Train descriptors (M, D) or list of (D,) rows

        Returns:
            Best match if its distance is strictly below ``max_distance``,
            otherwise None. Exact ties resolve to the lowest train index.
        """
        if isinstance(train_descriptors, list):
            if not train_descriptors:
                return None
            train_descriptors = np.stack(
                [np.asarray(d).reshape(-1) for d in train_descriptors]
            )

        train = _as_tensor(train_descriptors)
        if train.shape[0] == 0:
            return None

        distances = self.distances(query_descriptor, train)[0]
        # argmin returns the first index among equal minima
        best_idx = int(torch.argmin(distances).item())
        best_distance = float(distances[best_idx].item())

        if best_distance >= self.max_distance:
            return None

        return Match(0, best_idx, best_distance)
