from dependency_injector import containers, providers

from userapi.config import Settings
from userapi.database.session import get_db
from userapi.providers.geolocation import GeolocationClient
from userapi.providers.review_service import ReviewServiceClient
from userapi.services.leaderboard_service import LeaderboardService
from userapi.services.point_multiplier_service import PointMultiplierService
from userapi.services.point_rule_service import PointRuleService
from userapi.services.point_service import PointService
from userapi.services.points_ledger import PointsLedger


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)


class RepositoryModule(containers.DeclarativeContainer):
    """Database session."""

    get_db = providers.Resource(get_db)


class ProviderModule(containers.DeclarativeContainer):
    """Sibling service clients."""

    config = providers.DependenciesContainer()

    review_client = providers.Singleton(ReviewServiceClient, settings=config.config)
    geolocation_client = providers.Singleton(GeolocationClient, settings=config.config)


class ServiceModule(containers.DeclarativeContainer):
    """Service layer dependencies."""

    config = providers.DependenciesContainer()
    repositories = providers.DependenciesContainer()
    clients = providers.DependenciesContainer()

    points_ledger = providers.Factory(
        PointsLedger, db=repositories.get_db, settings=config.config
    )
    point_service = providers.Factory(
        PointService,
        db=repositories.get_db,
        settings=config.config,
        ledger=points_ledger,
        review_client=clients.review_client,
    )
    point_rule_service = providers.Factory(PointRuleService, db=repositories.get_db)
    point_multiplier_service = providers.Factory(
        PointMultiplierService, db=repositories.get_db
    )
    leaderboard_service = providers.Factory(
        LeaderboardService,
        db=repositories.get_db,
        settings=config.config,
        geolocation_client=clients.geolocation_client,
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    wiring_config = containers.WiringConfiguration(
        modules=[
            "userapi.routers.point_router",
            "userapi.routers.point_rule_router",
        ],
    )

    config = providers.Container(ConfigModule)
    repositories = providers.Container(RepositoryModule)
    clients = providers.Container(ProviderModule, config=config)
    services = providers.Container(
        ServiceModule, config=config, repositories=repositories, clients=clients
    )
