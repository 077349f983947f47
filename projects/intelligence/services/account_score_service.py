"""
Score diário de saúde das contas de anúncios.

Cinco componentes 0-100 (performance, eficiência, pixel, aprendizado e
consistência) combinados com pesos fixos. Um registro por
(usuário, conta, dia); recalcular no mesmo dia atualiza o registro.
"""

import asyncio
from datetime import date, datetime, timedelta
from typing import Any, Optional

from projects.intelligence.algorithms.profiling import snapshots_to_frame
from projects.intelligence.algorithms.scoring import (
    COMPONENT_WEIGHTS,
    NEUTRAL_COMPONENT_SCORE,
    build_breakdown,
    build_recommendations,
    combine_components,
    compute_daily_roas,
    compute_learning_success_rate,
    compute_performance_signal,
    compute_pixel_health_score,
    consistency_component,
    derive_trend,
    efficiency_component,
    grade_for,
    improvement_priority,
    learning_component,
    performance_component,
)
from projects.intelligence.config import intel_settings
from projects.intelligence.db.models import IntelAccountScore, ScoreTrend
from projects.intelligence.db.repositories.intel_repo import IntelRepository
from projects.intelligence.db.repositories.snapshot_repo import SnapshotRepository
from projects.intelligence.services.notification_service import NotificationService
from shared.core.exceptions import CredentialException
from shared.core.logging import get_logger
from shared.observability.metrics import intel_account_scores_total, intel_job_item_errors_total

logger = get_logger(__name__)

SCORED_ENTITY_TYPE = "adset"
PERFORMANCE_WINDOW_DAYS = 30
LEARNING_WINDOW_DAYS = 7
HISTORY_WINDOW_DAYS = 30
DASHBOARD_TREND_DAYS = 14

COMPONENT_DESCRIPTIONS: dict[str, str] = {
    "performance": "Baseado em ROAS e tendência de CPA",
    "efficiency": "Baseado no gasto desperdiçado",
    "pixel_health": "Baseado na qualidade dos eventos do pixel",
    "learning": "Baseado na taxa de sucesso da fase de aprendizado",
    "consistency": "Baseado na estabilidade da performance ao longo do tempo",
}


def components_of(score: IntelAccountScore) -> dict[str, int]:
    return {
        "performance": score.performance_score,
        "efficiency": score.efficiency_score,
        "pixel_health": score.pixel_health_score,
        "learning": score.learning_score,
        "consistency": score.consistency_score,
    }


def get_grade(score: int) -> str:
    """Letra da nota conforme as faixas configuradas."""
    return grade_for(score, intel_settings.intel_grade_cutoffs)


def get_status_label(score: int) -> str:
    return intel_settings.intel_status_labels.get(get_grade(score), get_grade(score))


def get_improvement_priority(score: IntelAccountScore) -> dict[str, Any]:
    return improvement_priority(components_of(score))


class AccountScoreService:
    """Calcula, persiste e apresenta o score de saúde das contas."""

    def __init__(self, session=None, snapshot_repo=None, intel_repo=None, notifications=None):
        self.snapshot_repo = snapshot_repo or SnapshotRepository(session)
        self.intel_repo = intel_repo or IntelRepository(session)
        self.notifications = notifications or NotificationService(self.intel_repo)
        self.batch_size = intel_settings.intel_batch_size
        self.batch_pause = intel_settings.intel_batch_pause_seconds

    # ==================== CÁLCULO ====================

    async def calculate_all_scores(self) -> dict[str, int]:
        """
        Calcula o score de todas as contas com snapshots, em lotes.
        Cada conta roda em um SAVEPOINT e é confirmada individualmente.
        """
        tallies = {"accounts": 0, "scored": 0, "errors": 0, "credential_errors": 0}

        pairs = await self.snapshot_repo.get_account_pairs()
        tallies["accounts"] = len(pairs)
        logger.info("Iniciando cálculo de scores", accounts=len(pairs))

        for start in range(0, len(pairs), self.batch_size):
            if start > 0 and self.batch_pause:
                await asyncio.sleep(self.batch_pause)

            for user_id, ad_account_id in pairs[start:start + self.batch_size]:
                try:
                    async with self.intel_repo.savepoint():
                        await self.calculate_score_for_account(user_id, ad_account_id)
                    await self.intel_repo.commit()
                    tallies["scored"] += 1
                except CredentialException as e:
                    logger.warning(
                        "Credencial indisponível para a conta",
                        user_id=user_id,
                        ad_account_id=ad_account_id,
                        error=str(e),
                    )
                    tallies["credential_errors"] += 1
                except Exception as e:
                    logger.error(
                        "Erro ao calcular score da conta",
                        user_id=user_id,
                        ad_account_id=ad_account_id,
                        error=str(e),
                    )
                    intel_job_item_errors_total.labels(job="scores", kind="account").inc()
                    tallies["errors"] += 1

        logger.info("Cálculo de scores concluído", **tallies)
        return tallies

    async def compute_components(
        self, user_id: int, ad_account_id: str, today: Optional[date] = None
    ) -> dict[str, Any]:
        """Lê os sinais brutos da conta e converte em componentes 0-100."""
        today = today or date.today()

        performance_rows = await self.snapshot_repo.get_snapshots(
            SCORED_ENTITY_TYPE,
            today - timedelta(days=PERFORMANCE_WINDOW_DAYS),
            user_id=user_id,
            ad_account_id=ad_account_id,
        )
        performance_df = snapshots_to_frame(performance_rows)
        signal = compute_performance_signal(performance_df)

        learning_df = performance_df[
            performance_df["snapshot_date"] >= today - timedelta(days=LEARNING_WINDOW_DAYS)
        ] if not performance_df.empty else performance_df

        pixel = await self.snapshot_repo.get_latest_pixel_health(user_id, ad_account_id)

        components = {
            "performance": performance_component(signal),
            "efficiency": efficiency_component(signal.waste_percentage if signal else None),
            "pixel_health": (
                compute_pixel_health_score(pixel) if pixel is not None else NEUTRAL_COMPONENT_SCORE
            ),
            "learning": learning_component(compute_learning_success_rate(learning_df)),
            "consistency": consistency_component(compute_daily_roas(performance_df)),
        }
        return {"components": components, "signal": signal}

    async def calculate_score_for_account(
        self, user_id: int, ad_account_id: str, today: Optional[date] = None
    ) -> IntelAccountScore:
        """Calcula e grava (upsert) o score do dia para a conta."""
        today = today or date.today()
        computed = await self.compute_components(user_id, ad_account_id, today)
        components = computed["components"]
        overall = combine_components(components)

        previous = await self.intel_repo.get_score(
            user_id, ad_account_id, today - timedelta(days=1)
        )
        previous_score = previous.overall_score if previous is not None else None
        trend, trend_percentage = derive_trend(overall, previous_score)

        breakdown = build_breakdown(components)
        signal = computed["signal"]
        if signal is not None:
            breakdown["signals"] = {
                "roas": round(signal.roas, 2),
                "cpa": round(signal.cpa, 2) if signal.cpa is not None else None,
                "wasted_spend": round(signal.wasted_spend, 2),
                "waste_percentage": round(signal.waste_percentage, 2),
                "cpa_trend": signal.cpa_trend,
            }

        fields = {
            "overall_score": overall,
            "performance_score": components["performance"],
            "efficiency_score": components["efficiency"],
            "pixel_health_score": components["pixel_health"],
            "learning_score": components["learning"],
            "consistency_score": components["consistency"],
            "score_trend": ScoreTrend(trend),
            "trend_percentage": trend_percentage,
            "score_breakdown": breakdown,
            "recommendations": build_recommendations(
                components, intel_settings.intel_recommendation_threshold
            ),
        }

        now = datetime.utcnow()
        score = await self.intel_repo.get_score(user_id, ad_account_id, today)
        if score is not None:
            for name, value in fields.items():
                setattr(score, name, value)
            score.updated_at = now
            await self.intel_repo.flush()
        else:
            score = await self.intel_repo.add(
                IntelAccountScore(
                    user_id=user_id,
                    ad_account_id=ad_account_id,
                    score_date=today,
                    created_at=now,
                    updated_at=now,
                    **fields,
                )
            )

        threshold = intel_settings.intel_score_change_threshold
        if previous_score is not None and abs(overall - previous_score) > threshold:
            await self.notifications.score_change(
                user_id, ad_account_id, previous_score, overall, threshold
            )

        intel_account_scores_total.labels(grade=get_grade(overall)).inc()
        logger.info(
            "Score da conta calculado",
            user_id=user_id,
            ad_account_id=ad_account_id,
            overall_score=overall,
            trend=trend,
        )
        return score

    # ==================== LEITURA ====================

    @staticmethod
    def get_grade(score: int) -> str:
        return get_grade(score)

    @staticmethod
    def get_status_label(score: int) -> str:
        return get_status_label(score)

    @staticmethod
    def get_improvement_priority(score: IntelAccountScore) -> dict[str, Any]:
        return get_improvement_priority(score)

    def _summarize(self, score: IntelAccountScore) -> dict[str, Any]:
        return {
            "ad_account_id": score.ad_account_id,
            "overall_score": score.overall_score,
            "grade": get_grade(score.overall_score),
            "status": get_status_label(score.overall_score),
            "trend": ScoreTrend(score.score_trend).value,
            "trend_percentage": score.trend_percentage,
            "components": components_of(score),
            "improvement_priority": get_improvement_priority(score),
            "recommendations": score.recommendations or [],
        }

    async def get_dashboard(self, user_id: int) -> dict[str, Any]:
        """Ranking das contas do usuário com média, melhor e pior."""
        rankings = await self.intel_repo.get_latest_scores(user_id)
        if not rankings:
            return {
                "has_data": False,
                "message": "Nenhum score calculado ainda. Os scores são atualizados diariamente.",
            }

        since = date.today() - timedelta(days=DASHBOARD_TREND_DAYS)
        trends = {}
        for score in rankings:
            history = await self.intel_repo.get_score_history(user_id, score.ad_account_id, since)
            trends[score.ad_account_id] = [
                {"date": h.score_date.isoformat(), "score": h.overall_score} for h in history
            ]

        best, worst = rankings[0], rankings[-1]
        return {
            "has_data": True,
            "summary": {
                "total_accounts": len(rankings),
                "average_score": round(sum(s.overall_score for s in rankings) / len(rankings)),
                "best_account": {
                    "id": best.ad_account_id,
                    "score": best.overall_score,
                    "grade": get_grade(best.overall_score),
                },
                "worst_account": {
                    "id": worst.ad_account_id,
                    "score": worst.overall_score,
                    "grade": get_grade(worst.overall_score),
                },
            },
            "accounts": [self._summarize(s) for s in rankings],
            "trends": trends,
        }

    async def get_account_detail(
        self, user_id: int, ad_account_id: str, days: int = HISTORY_WINDOW_DAYS
    ) -> dict[str, Any]:
        """Score atual detalhado por componente e histórico da conta."""
        history = await self.intel_repo.get_score_history(
            user_id, ad_account_id, date.today() - timedelta(days=days)
        )
        if not history:
            return {"has_data": False}

        current = history[-1]
        components = components_of(current)
        return {
            "has_data": True,
            "current": {
                "date": current.score_date.isoformat(),
                "overall_score": current.overall_score,
                "grade": get_grade(current.overall_score),
                "status": get_status_label(current.overall_score),
                "trend": ScoreTrend(current.score_trend).value,
                "trend_percentage": current.trend_percentage,
                "components": {
                    name: {
                        "score": components[name],
                        "weight": f"{round(weight * 100)}%",
                        "description": COMPONENT_DESCRIPTIONS[name],
                    }
                    for name, weight in COMPONENT_WEIGHTS.items()
                },
                "recommendations": current.recommendations or [],
            },
            "history": [
                {
                    "date": h.score_date.isoformat(),
                    "score": h.overall_score,
                    "trend": ScoreTrend(h.score_trend).value,
                }
                for h in history
            ],
        }
