"""
Results Service — tallies, statistics, vote timeline and CSV export.

All endpoints are read-only. Staff of an election may read its results at
any time; its voters only once the election is completed or archived.
"""
import logging
from uuid import UUID

from fastapi import Depends
from fastapi.responses import Response

from multivote.access import Principal, require_instance_write, require_results_access
from multivote.errors import NotFound
from multivote.results import CategoryResults, InstanceStats, ResultsAggregator
from multivote.schemas import (
    CandidateResult, CategoryResult, InstanceResultsOut, InstanceStatsOut, TimelinePoint,
)
from multivote.services.common import (
    create_app, current_principal, instance_out, results_aggregator, store,
)

logger = logging.getLogger(__name__)

app = create_app(
    "results",
    title="Results Service",
    description="Election result tallying, statistics and exports",
)


def category_result(results: CategoryResults) -> CategoryResult:
    return CategoryResult(
        category_id=results.category.id,
        name=results.category.name,
        display_order=results.category.display_order,
        total_votes=results.total_votes,
        candidates=[
            CandidateResult(
                candidate_id=t.candidate.id,
                full_name=t.candidate.full_name,
                photo_url=t.candidate.photo_url,
                votes=t.votes,
                percentage=t.percentage,
            )
            for t in results.candidates
        ],
    )


def stats_out(stats: InstanceStats) -> InstanceStatsOut:
    return InstanceStatsOut(
        total_voters=stats.total_voters,
        registered_voters=stats.registered_voters,
        votes_cast=stats.votes_cast,
        participation_rate=stats.participation_rate,
        categories_count=stats.categories_count,
        candidates_count=stats.candidates_count,
    )


async def _authorised_instance(principal: Principal, instance_id: UUID):
    instance = await store().get_instance(instance_id)
    if instance is None:
        raise NotFound("Election not found")
    require_results_access(principal, instance)
    return instance


@app.get("/categories/{category_id}/results", response_model=CategoryResult)
async def get_category_results(category_id: UUID,
                               principal: Principal = Depends(current_principal),
                               agg: ResultsAggregator = Depends(results_aggregator)):
    category = await store().get_category(category_id)
    if category is None:
        raise NotFound("Category not found")
    await _authorised_instance(principal, category.instance_id)
    return category_result(await agg.category_results(category_id))


@app.get("/elections/{instance_id}/results", response_model=InstanceResultsOut)
async def get_results(instance_id: UUID, principal: Principal = Depends(current_principal),
                      agg: ResultsAggregator = Depends(results_aggregator)):
    await _authorised_instance(principal, instance_id)
    results = await agg.instance_results(instance_id)
    return InstanceResultsOut(
        instance=instance_out(results.instance),
        stats=stats_out(results.stats),
        categories=[category_result(c) for c in results.categories],
    )


@app.get("/elections/{instance_id}/statistics", response_model=InstanceStatsOut)
async def get_statistics(instance_id: UUID, principal: Principal = Depends(current_principal),
                         agg: ResultsAggregator = Depends(results_aggregator)):
    await _authorised_instance(principal, instance_id)
    return stats_out(await agg.instance_stats(instance_id))


@app.get("/elections/{instance_id}/timeline", response_model=list[TimelinePoint])
async def get_timeline(instance_id: UUID, principal: Principal = Depends(current_principal),
                       agg: ResultsAggregator = Depends(results_aggregator)):
    await _authorised_instance(principal, instance_id)
    return [TimelinePoint(hour=hour, count=count)
            for hour, count in await agg.vote_timeline(instance_id)]


@app.get("/elections/{instance_id}/export")
async def export_votes(instance_id: UUID, principal: Principal = Depends(current_principal),
                       agg: ResultsAggregator = Depends(results_aggregator)):
    require_instance_write(principal, instance_id)
    body = await agg.export_csv(instance_id)
    logger.info(f"Votes of election {instance_id} exported by account {principal.account_id}")
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="votes-{instance_id}.csv"'},
    )
