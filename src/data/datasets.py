from typing import Optional

import numpy as np
import torch
import torch_geometric

from observation.bipartite import NodeBipartiteObs
from observation.common import is_not_applicable
from observation.errors import SerializationError
from observation.utils import load_observation


class GraphDataset(torch_geometric.data.Dataset):
    """
    This class encodes a collection of graphs, as well as a method to load such graphs from the disk.
    It can be used in turn by the data loaders provided by pytorch geometric.

    Every sample file holds a dict written by `collect_observations.py`, with a
    `NodeBipartiteObs` under "node_observation", the branching candidates and,
    optionally, their strong branching scores. NOT_APPLICABLE features are
    replaced by `fill_value`.
    """

    def __init__(self, sample_files, fill_value: float = 0.0):
        super().__init__(root=None, transform=None, pre_transform=None)
        self.sample_files = sample_files
        self.fill_value = fill_value

    def len(self):
        return len(self.sample_files)

    def process_sample(self, filepath: str) -> dict:
        sample = load_observation(filepath)
        if not (isinstance(sample, dict) and isinstance(sample.get("node_observation"), NodeBipartiteObs)):
            raise SerializationError(
                f"{filepath} is not in the correct format. Expected a dict with a NodeBipartiteObs under 'node_observation'."
            )
        return sample

    def _tensor(self, array: np.ndarray) -> torch.Tensor:
        array = np.asarray(array, dtype=np.float64)
        filled = np.where(is_not_applicable(array), self.fill_value, array)
        return torch.as_tensor(filled, dtype=torch.float32)

    def get(self, index: int):
        sample = self.process_sample(self.sample_files[index])
        obs: NodeBipartiteObs = sample["node_observation"]

        edges = obs.edge_features
        candidates = torch.as_tensor(sample.get("candidates", np.zeros(0)), dtype=torch.long)
        scores = sample.get("scores")
        candidate_scores = None
        if scores is not None:
            candidate_scores = self._tensor(np.asarray(scores)[candidates.numpy()])

        graph = BipartiteNodeData(
            constraint_features=self._tensor(obs.row_features),
            edge_indices=torch.as_tensor(edges.indices, dtype=torch.long),
            edge_features=self._tensor(edges.values).unsqueeze(1),
            variable_features=self._tensor(obs.variable_features),
            candidates=candidates,
            candidate_scores=candidate_scores,
        )
        graph.num_nodes = obs.row_features.shape[0] + obs.variable_features.shape[0]
        graph.sample_path = self.sample_files[index]
        return graph


class BipartiteNodeData(torch_geometric.data.Data):
    """
    This class encode a node bipartite graph observation as returned by
    `NodeBipartite` in a format understood by the pytorch geometric data
    handlers. Must support zero-arg construction so that PyG's Batch can create
    a template object internally.
    """

    def __init__(
        self,
        constraint_features: Optional[torch.Tensor] = None,
        edge_indices: Optional[torch.Tensor] = None,
        edge_features: Optional[torch.Tensor] = None,
        variable_features: Optional[torch.Tensor] = None,
        candidates: Optional[torch.Tensor] = None,
        candidate_scores: Optional[torch.Tensor] = None,
    ):
        super().__init__()

        # allow empty init (template object)
        if constraint_features is None:
            return

        self.constraint_features = constraint_features
        self.edge_index = edge_indices
        self.edge_attr = edge_features
        self.variable_features = variable_features
        self.candidates = candidates
        self.nb_candidates = 0 if candidates is None else candidates.numel()
        if candidate_scores is not None:
            self.candidate_scores = candidate_scores

    def __inc__(self, key, value, store, *args, **kwargs):
        """
        We overload the pytorch geometric method that tells how to increment indices when concatenating graphs
        for those entries (edge index, candidates) for which this is not obvious.
        """
        if key == "edge_index":
            return torch.tensor(
                [[self.constraint_features.size(0)], [self.variable_features.size(0)]]
            )
        elif key == "candidates":
            return self.variable_features.size(0)
        else:
            return super().__inc__(key, value, store, *args, **kwargs)

    def __str__(self):
        return (
            f"BipartiteNodeData(num_constraint_nodes={self.constraint_features.size(0)}, "
            f"num_variable_nodes={self.variable_features.size(0)}, "
            f"num_edges={self.edge_index.size(1)}, "
            f"nb_candidates={self.nb_candidates})"
        )
