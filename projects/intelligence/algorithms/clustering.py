"""
K-means simples sobre métricas de performance normalizadas.

Inicialização por amostragem aleatória de k linhas do dataset, distância
euclidiana e parada quando nenhuma atribuição muda (ou no limite de
iterações). Sem semente o resultado NÃO é reprodutível entre execuções:
os consumidores devem tratar os clusters como best-effort.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

# =============================================================================
# CONSTANTS
# =============================================================================

CLUSTER_FEATURES: list[str] = ["cpm", "ctr", "cpc", "cpa", "roas", "frequency"]

DEFAULT_K: int = 4
DEFAULT_MAX_ITERATIONS: int = 100

# Mean normalized centroid value -> qualitative label
CLUSTER_LABEL_THRESHOLDS: list[tuple[float, str]] = [
    (0.7, "high performers"),
    (0.5, "above average"),
    (0.3, "below average"),
]
FALLBACK_CLUSTER_LABEL = "low performers"


@dataclass
class KMeansResult:
    """Resultado de uma execução do k-means."""
    centroids: np.ndarray
    assignments: np.ndarray
    iterations: int
    converged: bool
    seed: Optional[int] = None

    @property
    def cluster_sizes(self) -> list[int]:
        k = len(self.centroids)
        return np.bincount(self.assignments, minlength=k).astype(int).tolist()


def min_max_normalize(matrix: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Normaliza cada coluna para [0, 1].

    Colunas sem variação viram 0.

    Returns:
        (matriz normalizada, mínimos, máximos)
    """
    matrix = np.asarray(matrix, dtype=float)
    mins = matrix.min(axis=0)
    maxs = matrix.max(axis=0)
    span = maxs - mins
    safe_span = np.where(span > 0, span, 1.0)
    normalized = np.where(span > 0, (matrix - mins) / safe_span, 0.0)
    return normalized, mins, maxs


def kmeans(
    data: np.ndarray,
    k: int = DEFAULT_K,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    seed: Optional[int] = None,
) -> KMeansResult:
    """
    Agrupa as linhas de data em k clusters.

    Args:
        data: Matriz (n_amostras, n_features)
        k: Número de clusters
        max_iterations: Limite de iterações
        seed: Semente da escolha dos centroides iniciais; None usa entropia do SO

    Raises:
        ValueError: se houver menos amostras que clusters
    """
    data = np.asarray(data, dtype=float)
    n_samples = data.shape[0]
    if n_samples < k:
        raise ValueError(f"k-means requer ao menos {k} amostras, recebeu {n_samples}")

    rng = np.random.default_rng(seed)
    centroids = data[rng.permutation(n_samples)[:k]].copy()
    assignments = np.full(n_samples, -1, dtype=int)

    iterations = 0
    converged = False
    while iterations < max_iterations:
        iterations += 1
        distances = np.linalg.norm(data[:, np.newaxis, :] - centroids[np.newaxis, :, :], axis=2)
        new_assignments = distances.argmin(axis=1)

        if np.array_equal(new_assignments, assignments):
            converged = True
            break
        assignments = new_assignments

        for cluster in range(k):
            members = data[assignments == cluster]
            # Cluster vazio mantém o centroide anterior
            if len(members) > 0:
                centroids[cluster] = members.mean(axis=0)

    return KMeansResult(
        centroids=centroids,
        assignments=assignments,
        iterations=iterations,
        converged=converged,
        seed=seed,
    )


def label_cluster(centroid: np.ndarray) -> str:
    """Rótulo qualitativo a partir da média do centroide normalizado."""
    mean_value = float(np.mean(centroid))
    for threshold, label in CLUSTER_LABEL_THRESHOLDS:
        if mean_value > threshold:
            return label
    return FALLBACK_CLUSTER_LABEL


def describe_clusters(centroids: np.ndarray) -> list[str]:
    return [f"Cluster {i + 1}: {label_cluster(c)}" for i, c in enumerate(centroids)]
