"""
Serviço de aprendizado de padrões.

Executa cinco passes independentes sobre os snapshots de performance:
priors de especialistas, hora do dia, perfis de vencedores/perdedores,
clusters e fadiga de audiência. Cada pass tem seu próprio mínimo de
amostras; dados insuficientes resultam em "skipped", não em erro.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

import numpy as np

from projects.intelligence.algorithms.clustering import (
    CLUSTER_FEATURES,
    describe_clusters,
    kmeans,
    min_max_normalize,
)
from projects.intelligence.algorithms.profiling import (
    aggregate_entities,
    build_profile,
    classify_hours,
    detect_fatigue_transitions,
    hourly_rows,
    snapshots_to_frame,
    split_cohorts,
    summarize_fatigue,
)
from projects.intelligence.config import intel_settings
from projects.intelligence.db.models import PatternType
from projects.intelligence.db.repositories.expert_rule_repo import ExpertRuleRepository
from projects.intelligence.db.repositories.intel_repo import IntelRepository
from projects.intelligence.db.repositories.snapshot_repo import SnapshotRepository
from projects.intelligence.schemas.patterns import (
    ClusterPayload,
    FatiguePayload,
    FeatureBand,
    ProfilePayload,
    TimePerformancePayload,
)
from projects.intelligence.services.expert_prior_service import ExpertPriorService
from projects.intelligence.services.pattern_store import PatternStore
from shared.core.logging import get_logger
from shared.observability.metrics import intel_learning_passes_total

logger = get_logger(__name__)

# Janelas (dias)
TIME_WINDOW_DAYS = 30
PROFILE_WINDOW_DAYS = 7
CLUSTER_WINDOW_DAYS = 7
FATIGUE_WINDOW_DAYS = 30

# Mínimos de amostra
MIN_TIME_SAMPLES = 100
MIN_PROFILE_SAMPLES = 50
MIN_COHORT_SIZE = 10
MIN_CLUSTER_SAMPLES = 50
MIN_FATIGUE_SNAPSHOTS = 100
MIN_FATIGUE_TRANSITIONS = 20

# Filtros de gasto/frequência na leitura
PROFILE_MIN_SPEND = 10.0
FATIGUE_MIN_FREQUENCY = 1.0

CLUSTER_CONFIDENCE = 0.75

TIME_PATTERN_NAME = "Hourly Performance Pattern"
WINNER_PATTERN_NAME = "High ROAS Ad Set Profile"
LOSER_PATTERN_NAME = "Low ROAS Ad Set Profile"
FATIGUE_PATTERN_NAME = "Audience Fatigue Pattern"


@dataclass
class LearningPassResult:
    """Resultado de um pass de aprendizado."""
    status: str  # stored, skipped, failed
    patterns_stored: int = 0
    sample_size: int = 0
    reason: Optional[str] = None

    @classmethod
    def skipped(cls, reason: str, sample_size: int = 0) -> "LearningPassResult":
        return cls(status="skipped", sample_size=sample_size, reason=reason)


class PatternLearningService:
    """Orquestra os passes de aprendizado e grava os resultados no PatternStore."""

    def __init__(
        self,
        session=None,
        snapshot_repo=None,
        intel_repo=None,
        expert_repo=None,
        kmeans_seed: Optional[int] = None,
    ):
        self.snapshot_repo = snapshot_repo or SnapshotRepository(session)
        self.intel_repo = intel_repo or IntelRepository(session)
        self.pattern_store = PatternStore(self.intel_repo)
        self.expert_priors = ExpertPriorService(
            expert_repo=expert_repo or ExpertRuleRepository(session),
            pattern_store=self.pattern_store,
        )
        self.entity_type = intel_settings.intel_learning_entity_type
        self.kmeans_seed = kmeans_seed if kmeans_seed is not None else intel_settings.intel_kmeans_seed
        self.logger = get_logger(self.__class__.__name__)

    async def learn_all_patterns(
        self,
        user_id: Optional[int] = None,
        ad_account_id: Optional[str] = None,
    ) -> dict[str, dict[str, Any]]:
        """
        Executa todos os passes no escopo informado (global por padrão).

        Um pass que falha é registrado como "failed" e não interrompe os demais.
        """
        passes = [
            ("expert_baseline", self.seed_expert_baseline),
            ("time_patterns", self.learn_time_patterns),
            ("profiles", self.learn_profiles),
            ("clusters", self.learn_clusters),
            ("fatigue_patterns", self.learn_fatigue_patterns),
        ]

        started = datetime.utcnow()
        results: dict[str, dict[str, Any]] = {}
        for name, learning_pass in passes:
            try:
                result = await learning_pass(user_id=user_id, ad_account_id=ad_account_id)
            except Exception as e:
                self.logger.error(
                    "Erro no pass de aprendizado",
                    learning_pass=name,
                    user_id=user_id,
                    ad_account_id=ad_account_id,
                    error=str(e),
                    exc_info=True,
                )
                result = LearningPassResult(status="failed", reason=str(e))

            intel_learning_passes_total.labels(learning_pass=name, status=result.status).inc()
            results[name] = asdict(result)

        self.logger.info(
            "Aprendizado de padrões concluído",
            user_id=user_id,
            ad_account_id=ad_account_id,
            duration_seconds=round((datetime.utcnow() - started).total_seconds(), 2),
            stored=sum(r["patterns_stored"] for r in results.values()),
        )
        return results

    async def _load_frame(
        self,
        window_days: int,
        user_id: Optional[int],
        ad_account_id: Optional[str],
        min_spend: Optional[float] = None,
        min_frequency: Optional[float] = None,
    ):
        since = (datetime.utcnow() - timedelta(days=window_days)).date()
        snapshots = await self.snapshot_repo.get_snapshots(
            self.entity_type,
            since,
            user_id=user_id,
            ad_account_id=ad_account_id,
            min_spend=min_spend,
            min_frequency=min_frequency,
        )
        return snapshots_to_frame(snapshots)

    # ==================== PASSES ====================

    async def seed_expert_baseline(
        self, user_id: Optional[int] = None, ad_account_id: Optional[str] = None
    ) -> LearningPassResult:
        summary = await self.expert_priors.seed_expert_baseline(
            user_id=user_id, ad_account_id=ad_account_id
        )
        if summary["patterns_stored"] == 0:
            return LearningPassResult.skipped("nenhuma regra de especialista ativa")
        return LearningPassResult(
            status="stored",
            patterns_stored=summary["patterns_stored"],
            sample_size=summary["rules_considered"],
        )

    async def learn_time_patterns(
        self, user_id: Optional[int] = None, ad_account_id: Optional[str] = None
    ) -> LearningPassResult:
        """ROAS médio por hora do dia nos últimos 30 dias."""
        df = await self._load_frame(TIME_WINDOW_DAYS, user_id, ad_account_id)
        qualifying = len(hourly_rows(df)) if not df.empty else 0
        if qualifying < MIN_TIME_SAMPLES:
            self.logger.info(
                "Dados insuficientes para padrão horário",
                available=qualifying,
                required=MIN_TIME_SAMPLES,
            )
            return LearningPassResult.skipped("amostra insuficiente", qualifying)

        profile = classify_hours(df)
        payload = TimePerformancePayload(
            hourly_performance=profile.hourly_performance,
            avg_roas_by_hour=profile.avg_roas_by_hour,
            overall_avg=profile.overall_avg,
            best_hours=profile.best_hours,
            worst_hours=profile.worst_hours,
        )
        await self.pattern_store.store_pattern(
            pattern_type=PatternType.TIME_PERFORMANCE,
            pattern_name=TIME_PATTERN_NAME,
            payload=payload,
            confidence=min(0.9, profile.sample_size / 1000),
            sample_size=profile.sample_size,
            user_id=user_id,
            ad_account_id=ad_account_id,
            description="ROAS médio por hora do dia nos últimos 30 dias",
        )
        return LearningPassResult(status="stored", patterns_stored=1, sample_size=profile.sample_size)

    async def learn_profiles(
        self, user_id: Optional[int] = None, ad_account_id: Optional[str] = None
    ) -> LearningPassResult:
        """Perfis p25-p75 das entidades vencedoras e perdedoras dos últimos 7 dias."""
        df = await self._load_frame(
            PROFILE_WINDOW_DAYS, user_id, ad_account_id, min_spend=PROFILE_MIN_SPEND
        )
        if len(df) < MIN_PROFILE_SAMPLES:
            return LearningPassResult.skipped("amostra insuficiente", len(df))

        entities = aggregate_entities(df)
        winners, losers = split_cohorts(entities)

        stored = 0
        cohorts = [
            (PatternType.WINNER_PROFILE, WINNER_PATTERN_NAME, winners, "ROAS > 150%"),
            (PatternType.LOSER_PROFILE, LOSER_PATTERN_NAME, losers, "ROAS < 50%"),
        ]
        for pattern_type, name, cohort, criterion in cohorts:
            if len(cohort) < MIN_COHORT_SIZE:
                self.logger.info(
                    "Coorte pequena demais para perfil",
                    pattern_type=pattern_type.value,
                    size=len(cohort),
                    required=MIN_COHORT_SIZE,
                )
                continue

            payload = ProfilePayload(
                pattern_type=pattern_type.value,
                profile={k: FeatureBand(**v) for k, v in build_profile(cohort).items()},
                avg_roas=round(float(cohort["roas"].mean()), 4),
                avg_spend=round(float(cohort["spend"].mean()), 4),
            )
            await self.pattern_store.store_pattern(
                pattern_type=pattern_type,
                pattern_name=name,
                payload=payload,
                confidence=min(0.85, len(cohort) / 100),
                sample_size=len(cohort),
                user_id=user_id,
                ad_account_id=ad_account_id,
                description=f"Perfil de {len(cohort)} conjuntos com {criterion} e gasto >= 50",
            )
            stored += 1

        if stored == 0:
            return LearningPassResult.skipped("nenhuma coorte com tamanho mínimo", len(df))
        return LearningPassResult(status="stored", patterns_stored=stored, sample_size=len(entities))

    async def learn_clusters(
        self, user_id: Optional[int] = None, ad_account_id: Optional[str] = None
    ) -> LearningPassResult:
        """
        K-means (k=4) sobre métricas normalizadas dos últimos 7 dias.

        Sem semente configurada os clusters variam entre execuções.
        """
        df = await self._load_frame(
            CLUSTER_WINDOW_DAYS, user_id, ad_account_id, min_spend=PROFILE_MIN_SPEND
        )
        if len(df) < MIN_CLUSTER_SAMPLES:
            return LearningPassResult.skipped("amostra insuficiente", len(df))

        matrix = df[CLUSTER_FEATURES].fillna(0).to_numpy(dtype=float)
        normalized, mins, maxs = min_max_normalize(matrix)

        k = intel_settings.intel_kmeans_k
        result = kmeans(
            normalized,
            k=k,
            max_iterations=intel_settings.intel_kmeans_max_iterations,
            seed=self.kmeans_seed,
        )
        if not result.converged:
            self.logger.warning("K-means atingiu o limite de iterações", iterations=result.iterations)

        payload = ClusterPayload(
            centroids=np.round(result.centroids, 6).tolist(),
            feature_names=CLUSTER_FEATURES,
            k=k,
            cluster_sizes=result.cluster_sizes,
            cluster_labels=describe_clusters(result.centroids),
            feature_min=mins.tolist(),
            feature_max=maxs.tolist(),
            iterations=result.iterations,
            seed=self.kmeans_seed,
            reproducible=self.kmeans_seed is not None,
        )
        await self.pattern_store.store_pattern(
            pattern_type=PatternType.CLUSTER,
            pattern_name=f"Performance Clusters (K={k})",
            payload=payload,
            confidence=CLUSTER_CONFIDENCE,
            sample_size=len(df),
            user_id=user_id,
            ad_account_id=ad_account_id,
            description="Agrupamento de snapshots por métricas normalizadas (best-effort)",
        )
        return LearningPassResult(status="stored", patterns_stored=1, sample_size=len(df))

    async def learn_fatigue_patterns(
        self, user_id: Optional[int] = None, ad_account_id: Optional[str] = None
    ) -> LearningPassResult:
        """Frequência típica em que o CTR começa a cair (últimos 30 dias)."""
        df = await self._load_frame(
            FATIGUE_WINDOW_DAYS, user_id, ad_account_id, min_frequency=FATIGUE_MIN_FREQUENCY
        )
        if len(df) < MIN_FATIGUE_SNAPSHOTS:
            return LearningPassResult.skipped("amostra insuficiente", len(df))

        transitions = detect_fatigue_transitions(df)
        if len(transitions) < MIN_FATIGUE_TRANSITIONS:
            return LearningPassResult.skipped("poucas transições de fadiga", len(transitions))

        summary = summarize_fatigue(transitions)
        await self.pattern_store.store_pattern(
            pattern_type=PatternType.AUDIENCE_FATIGUE,
            pattern_name=FATIGUE_PATTERN_NAME,
            payload=FatiguePayload(
                fatigue_threshold=summary.fatigue_threshold,
                frequency_decay=summary.frequency_decay,
                data_points=summary.data_points,
            ),
            confidence=min(0.8, summary.data_points / 100),
            sample_size=summary.data_points,
            user_id=user_id,
            ad_account_id=ad_account_id,
            description="Queda de CTR entre observações consecutivas com frequência > 2",
        )
        return LearningPassResult(status="stored", patterns_stored=1, sample_size=summary.data_points)

    # ==================== LEITURA ====================

    async def get_pattern_insights(
        self, user_id: Optional[int] = None, ad_account_id: Optional[str] = None
    ) -> dict[str, Any]:
        """Resumo dos padrões ativos no escopo."""
        patterns = await self.pattern_store.get_active_patterns(user_id, ad_account_id)
        by_type: dict[str, int] = {}
        for p in patterns:
            key = getattr(p.pattern_type, "value", p.pattern_type)
            by_type[key] = by_type.get(key, 0) + 1

        return {
            "total_patterns": len(patterns),
            "by_type": by_type,
            "patterns": [
                {
                    "id": p.id,
                    "type": getattr(p.pattern_type, "value", p.pattern_type),
                    "name": p.pattern_name,
                    "description": p.description,
                    "confidence": p.confidence_score,
                    "sample_size": p.sample_size,
                    "valid_until": p.valid_until.isoformat() if p.valid_until else None,
                }
                for p in patterns
            ],
        }

    async def get_training_status(self) -> dict[str, Any]:
        """Prontidão do aprendizado: volume de dados, padrões e priors."""
        snapshot_count = await self.snapshot_repo.count_snapshots()
        patterns = await self.pattern_store.get_active_patterns()
        expert_rules = await self.expert_priors.expert_repo.count_active()

        data_readiness = min(100.0, snapshot_count / 100 * 100)
        pattern_readiness = min(100.0, len(patterns) / 3 * 100)
        expert_readiness = 100.0 if expert_rules > 0 else 0.0
        overall = round(data_readiness * 0.4 + pattern_readiness * 0.3 + expert_readiness * 0.3)

        if overall >= 80:
            status = "ready"
        elif overall >= 50:
            status = "learning"
        else:
            status = "collecting"

        return {
            "status": status,
            "overall_readiness": overall,
            "data_readiness": round(data_readiness),
            "pattern_readiness": round(pattern_readiness),
            "expert_readiness": round(expert_readiness),
            "snapshot_count": snapshot_count,
            "active_patterns": len(patterns),
            "expert_rules": expert_rules,
        }

    async def get_cluster_visualization(
        self, user_id: Optional[int] = None, ad_account_id: Optional[str] = None
    ) -> Optional[dict[str, Any]]:
        """Centroides do padrão de clusters mais confiável, para o dashboard."""
        clusters = await self.pattern_store.get_active_patterns(
            user_id, ad_account_id, pattern_type=PatternType.CLUSTER
        )
        if not clusters:
            return None

        payload = self.pattern_store.payload_of(clusters[0])
        return {
            "k": payload.k,
            "feature_names": payload.feature_names,
            "reproducible": payload.reproducible,
            "clusters": [
                {
                    "id": i,
                    "label": payload.cluster_labels[i],
                    "size": payload.cluster_sizes[i],
                    "centroid": dict(zip(payload.feature_names, centroid)),
                }
                for i, centroid in enumerate(payload.centroids)
            ],
        }

    async def predict_performance(
        self, inputs: dict[str, Any], user_id: Optional[int] = None, ad_account_id: Optional[str] = None
    ) -> dict[str, Any]:
        """Aplica todos os padrões ativos aos dados informados."""
        patterns = await self.pattern_store.get_active_patterns(user_id, ad_account_id)
        predictions = []
        for pattern in patterns:
            prediction = self.pattern_store.predict(pattern, inputs)
            if prediction.get("applicable"):
                predictions.append({
                    "pattern_id": pattern.id,
                    "pattern_type": getattr(pattern.pattern_type, "value", pattern.pattern_type),
                    "pattern_name": pattern.pattern_name,
                    **prediction,
                })
        return {"predictions": predictions, "patterns_evaluated": len(patterns)}
