import pytest
from sqlalchemy.future import select

from apipilot.db import crud
from apipilot.models.api_configuration import APIConfiguration
from apipilot.models.discovered_api import DiscoveredAPI
from apipilot.models.execution_record import ExecutionRecord
from apipilot.schemas.catalog import Catalog

from conftest import SAMPLE_CATALOG


class TestConfiguration:
    @pytest.mark.asyncio
    async def test_upsert_keeps_one_row(self, session_factory, make_api):
        api, _ = await make_api()

        async with session_factory() as session:
            await crud.upsert_configuration(session, api.id, {"api_key": "old"})
            await session.commit()
        async with session_factory() as session:
            await crud.upsert_configuration(session, api.id, {"api_key": "new"}, verify_tls=False)
            await session.commit()

        async with session_factory() as session:
            rows = (await session.execute(select(APIConfiguration))).scalars().all()
        assert len(rows) == 1
        assert rows[0].credentials == {"api_key": "new"}
        assert rows[0].verify_tls is False
        assert rows[0].last_tested is not None

    @pytest.mark.asyncio
    async def test_inactive_configuration_is_ignored(self, session_factory, make_api):
        api, _ = await make_api()
        async with session_factory() as session:
            await crud.upsert_configuration(session, api.id, {"api_key": "k"}, is_active=False)
            await session.commit()
            assert await crud.get_configuration(session, api.id) is None
            assert await crud.get_configuration(session, api.id, active_only=False) is not None


class TestCatalog:
    @pytest.mark.asyncio
    async def test_replace_catalog_is_not_additive(self, session_factory, project):
        catalog = Catalog.model_validate(SAMPLE_CATALOG)

        for _ in range(2):
            async with session_factory() as session:
                async with session.begin():
                    await crud.replace_catalog(session, project.id, 1, catalog.apis)

        async with session_factory() as session:
            apis = (await session.execute(select(DiscoveredAPI))).scalars().all()
            assert len(apis) == 1
            endpoints = await crud.list_endpoints(session, apis[0].id)
        assert [e.path for e in endpoints] == ["/auth/login", "/invoices"]
        assert endpoints[0].parameters == [
            {"name": "username", "type": "string", "required": True},
            {"name": "password", "type": "string", "required": True},
        ]

    @pytest.mark.asyncio
    async def test_dependency_counts_and_cascade(self, session_factory, make_api, project):
        api, (endpoint,) = await make_api(endpoints=[{"method": "GET", "path": "/a"}])
        async with session_factory() as session:
            await crud.upsert_configuration(session, api.id, {})
            session.add(ExecutionRecord(
                project_id=project.id, api_id=api.id, endpoint_id=endpoint.id,
                status="success", execution_duration=3,
            ))
            await session.commit()

            assert await crud.count_api_dependencies(session, api.id) == {
                "endpoints": 1, "configurations": 1, "executions": 1,
            }

            await crud.delete_api_cascade(session, api.id)
            await session.commit()

            assert await crud.get_api(session, project.id, api.id) is None
            record = (await session.execute(select(ExecutionRecord))).scalar_one()
            await session.refresh(record)
            assert record.api_id is None
            assert record.endpoint_id is None

    @pytest.mark.asyncio
    async def test_document_dependency_count(self, session_factory, project):
        catalog = Catalog.model_validate(SAMPLE_CATALOG)
        async with session_factory() as session:
            await crud.replace_catalog(session, project.id, 5, catalog.apis)
            await session.commit()
            assert await crud.count_document_dependencies(session, 5) == {"apis": 1}
            assert await crud.count_document_dependencies(session, 6) == {"apis": 0}
