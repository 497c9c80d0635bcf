from datetime import datetime, timezone

import pytest

from jobmatch.errors import InvalidEmbedding, InvalidRequest, JobNotFound, ProviderError, SourceNotEmbedded
from jobmatch.models.schemas import RecommendationQuery
from jobmatch.services.job_repository import JobRepository
from jobmatch.services.recommendation import RecommendationService, build_query
from tests.conftest import FakeProvider, make_vector

DELETED = datetime(2024, 6, 1, tzinfo=timezone.utc)


@pytest.fixture
def service(session, provider):
    return RecommendationService(JobRepository(session), provider, max_page_size=10)


def ids(page):
    return [item.id for item in page.items]


class TestBuildQuery:
    def test_camel_case_payload(self):
        q = build_query({"jobId": "7", "page": "2", "pageSize": 3, "minScore": 0})
        assert q.source_job_id == 7
        assert q.page == 2
        assert q.page_size == 3
        assert q.min_score == 0

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"jobId": 1, "query": "cfo"},
            {"query": "   "},
            {"jobId": 1, "minScore": 4},
            {"jobId": 1, "minScore": -1},
            {"jobId": 1, "page": "abc"},
            {"jobId": "not-an-id"},
        ],
    )
    def test_invalid_payloads(self, payload):
        with pytest.raises(InvalidRequest):
            build_query(payload)

    def test_non_positive_pagination_is_clamped(self):
        q = build_query({"query": "cfo", "page": 0, "pageSize": -5})
        assert q.page == 1
        assert q.page_size == 1

    def test_defaults(self):
        q = build_query({"query": "cfo"})
        assert q.page == 1
        assert q.page_size == 5
        assert q.min_score is None


class TestRecommendBySourceJob:
    def test_nearest_first(self, service, add_job):
        a = add_job(title="A", embedding=make_vector(1.0, 0.0))
        b = add_job(title="B", embedding=make_vector(1.0, 0.2))
        c = add_job(title="C", embedding=make_vector(0.2, 1.0))

        page = service.recommend(RecommendationQuery(source_job_id=a.id, min_score=0))

        assert ids(page) == [b.id, c.id]
        assert page.items[0].distance < page.items[1].distance
        assert page.items[0].similarity == pytest.approx(1.0 - page.items[0].distance)

    def test_never_includes_source(self, service, add_job):
        src = add_job(embedding=make_vector(1.0))
        add_job(embedding=make_vector(1.0))
        add_job(embedding=make_vector(0.5, 0.5))

        page = service.recommend(RecommendationQuery(source_job_id=src.id, min_score=0, page_size=10))

        assert src.id not in ids(page)
        assert page.total == 2

    def test_min_score_beats_similarity(self, service, add_job):
        src = add_job(embedding=make_vector(1.0))
        nearest = add_job(cfo_score=1, embedding=make_vector(1.0, 0.01))
        farther = add_job(cfo_score=2, embedding=make_vector(0.3, 1.0))

        page = service.recommend(RecommendationQuery(source_job_id=src.id, min_score=2))

        assert ids(page) == [farther.id]
        assert nearest.id not in ids(page)

    def test_default_min_score_excludes_unscored(self, service, add_job):
        src = add_job(embedding=make_vector(1.0))
        add_job(cfo_score=0, embedding=make_vector(1.0))
        add_job(cfo_score=None, embedding=make_vector(1.0))
        scored = add_job(cfo_score=1, embedding=make_vector(1.0, 1.0))

        page = service.recommend(RecommendationQuery(source_job_id=src.id))

        assert ids(page) == [scored.id]

    def test_results_sorted_and_stable(self, service, add_job):
        src = add_job(embedding=make_vector(1.0))
        for i in range(6):
            add_job(embedding=make_vector(1.0, (i % 3) * 0.5))

        query = RecommendationQuery(source_job_id=src.id, min_score=0, page_size=10)
        first = service.recommend(query)
        distances = [item.distance for item in first.items]

        assert distances == sorted(distances)
        assert all(ids(service.recommend(query)) == ids(first) for _ in range(3))

    def test_source_without_embedding(self, service, add_job):
        src = add_job()
        add_job(embedding=make_vector(1.0))
        with pytest.raises(SourceNotEmbedded):
            service.recommend(RecommendationQuery(source_job_id=src.id))

    def test_unknown_or_deleted_source(self, service, add_job):
        gone = add_job(embedding=make_vector(1.0), deleted_at=DELETED)
        with pytest.raises(JobNotFound):
            service.recommend(RecommendationQuery(source_job_id=gone.id))
        with pytest.raises(JobNotFound):
            service.recommend(RecommendationQuery(source_job_id=31337))

    def test_no_similar_jobs_is_a_valid_empty_page(self, service, add_job):
        src = add_job(embedding=make_vector(1.0))
        page = service.recommend(RecommendationQuery(source_job_id=src.id))
        assert page.items == []
        assert page.total == 0
        assert page.total_pages == 0


class TestPagination:
    @pytest.fixture
    def corpus(self, add_job):
        src = add_job(embedding=make_vector(1.0))
        others = [add_job(embedding=make_vector(1.0, (i + 1) * 0.1)) for i in range(7)]
        return src, others

    def test_pages_are_consistent(self, service, corpus):
        src, others = corpus
        seen = []
        for page_no in (1, 2, 3):
            page = service.recommend(
                RecommendationQuery(source_job_id=src.id, min_score=0, page=page_no, page_size=3)
            )
            assert page.total == 7
            assert page.total_pages == 3
            assert len(page.items) <= page.page_size
            seen.extend(ids(page))
        assert seen == [j.id for j in others]

    def test_page_beyond_last_is_empty(self, service, corpus):
        src, _ = corpus
        page = service.recommend(
            RecommendationQuery(source_job_id=src.id, min_score=0, page=9, page_size=3)
        )
        assert page.items == []
        assert page.total == 7
        assert page.page == 9

    def test_huge_page_number_is_an_empty_page(self, service, corpus):
        src, _ = corpus
        page = service.recommend(build_query({"jobId": src.id, "minScore": 0, "page": 10**12}))
        assert page.items == []
        assert page.total == 7
        assert page.page == 10**12

    def test_page_size_is_capped(self, service, corpus):
        src, _ = corpus
        page = service.recommend(
            RecommendationQuery(source_job_id=src.id, min_score=0, page_size=500)
        )
        assert page.page_size == 10
        assert page.total_pages == 1


class TestRecommendByQueryText:
    def test_embeds_query_and_searches_without_exclusion(self, session, add_job):
        near = add_job(embedding=make_vector(1.0, 0.1))
        far = add_job(embedding=make_vector(0.0, 1.0))
        provider = FakeProvider(vectors={"cfo copenhagen": make_vector(1.0)})
        service = RecommendationService(JobRepository(session), provider)

        page = service.recommend(build_query({"query": "cfo copenhagen", "minScore": 0}))

        assert provider.calls == ["cfo copenhagen"]
        assert ids(page) == [near.id, far.id]

    def test_query_embedding_is_not_persisted(self, session, add_job):
        add_job(embedding=make_vector(1.0))
        repo = JobRepository(session)
        before = repo.embedding_status()

        RecommendationService(repo, FakeProvider()).recommend(build_query({"query": "controller"}))

        assert repo.embedding_status() == before

    def test_provider_error_propagates(self, session, add_job):
        add_job(embedding=make_vector(1.0))
        provider = FakeProvider(failures={"cfo": ProviderError("rate limited", status=429)})
        service = RecommendationService(JobRepository(session), provider)
        with pytest.raises(ProviderError):
            service.recommend(build_query({"query": "cfo"}))

    def test_invalid_query_vector_is_rejected(self, session):
        provider = FakeProvider(vectors={"cfo": [0.1] * 10})
        service = RecommendationService(JobRepository(session), provider)
        with pytest.raises(InvalidEmbedding):
            service.recommend(build_query({"query": "cfo"}))

    def test_location_filter(self, session, add_job):
        cph = add_job(location="Copenhagen", embedding=make_vector(1.0))
        add_job(location="Aarhus", embedding=make_vector(1.0))
        service = RecommendationService(JobRepository(session), FakeProvider())

        page = service.recommend(build_query({"query": "cfo", "location": "copenhagen"}))

        assert ids(page) == [cph.id]


def test_both_or_neither_source_is_rejected(service):
    both = RecommendationQuery.model_construct(
        source_job_id=1, query_text="x", min_score=None, page=1, page_size=5,
        min_similarity=None, location=None, company=None,
    )
    with pytest.raises(InvalidRequest):
        service.recommend(both)
