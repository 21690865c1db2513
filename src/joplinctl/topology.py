"""Compose service topology for the Joplin stack.

Values keep ``${VAR}`` references so compose resolves them from ``.env`` at run
time and secrets live in a single file.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

import yaml

APP_PORT = 22300
DB_CONTAINER = "joplin_postgres"
APP_CONTAINER = "joplin_server"
PROXY_CONTAINER = "joplin_nginx"
CERTBOT_PROFILE = "certs"
WEBROOT_MOUNT = "/var/www/certbot"
LETSENCRYPT_MOUNT = "/etc/letsencrypt"

HEALTHY = "service_healthy"


@dataclass(frozen=True, slots=True)
class HealthCheck:
    """Container health predicate and its retry budget."""

    test: tuple[str, ...]
    interval: str
    timeout: str
    retries: int
    start_period: str | None = None

    def to_compose(self) -> dict[str, object]:
        """Return the compose ``healthcheck`` mapping."""
        payload: dict[str, object] = {
            "test": list(self.test),
            "interval": self.interval,
            "timeout": self.timeout,
            "retries": self.retries,
        }
        if self.start_period is not None:
            payload["start_period"] = self.start_period
        return payload


@dataclass(frozen=True, slots=True)
class ServiceDefinition:
    """One compose service."""

    name: str
    image: str
    container_name: str | None = None
    restart: str | None = "always"
    environment: Mapping[str, object] = field(default_factory=dict)
    volumes: tuple[str, ...] = ()
    ports: tuple[str, ...] = ()
    expose: tuple[str, ...] = ()
    depends_on: Mapping[str, str] = field(default_factory=dict)
    healthcheck: HealthCheck | None = None
    profiles: tuple[str, ...] = ()

    def to_compose(self) -> dict[str, object]:
        """Return the compose mapping for this service."""
        payload: dict[str, object] = {"image": self.image}
        if self.container_name:
            payload["container_name"] = self.container_name
        if self.restart:
            payload["restart"] = self.restart
        if self.profiles:
            payload["profiles"] = list(self.profiles)
        if self.depends_on:
            payload["depends_on"] = {
                name: {"condition": condition} for name, condition in self.depends_on.items()
            }
        if self.expose:
            payload["expose"] = list(self.expose)
        if self.ports:
            payload["ports"] = list(self.ports)
        if self.environment:
            payload["environment"] = dict(self.environment)
        if self.volumes:
            payload["volumes"] = list(self.volumes)
        if self.healthcheck is not None:
            payload["healthcheck"] = self.healthcheck.to_compose()
        return payload


@dataclass(frozen=True, slots=True)
class ServiceTopology:
    """The database, application, proxy and certificate-client services."""

    services: tuple[ServiceDefinition, ...]

    def service(self, name: str) -> ServiceDefinition:
        """Return the service called *name*."""
        for service in self.services:
            if service.name == name:
                return service
        raise KeyError(name)

    def dependency_edges(self) -> set[tuple[str, str, str]]:
        """Return ``(service, dependency, condition)`` startup gates."""
        return {
            (service.name, dependency, condition)
            for service in self.services
            for dependency, condition in service.depends_on.items()
        }

    def core_services(self) -> tuple[str, ...]:
        """Return services started by ``up`` (those without a profile), in order."""
        return tuple(service.name for service in self.services if not service.profiles)

    def to_compose(self) -> dict[str, object]:
        """Return the compose document."""
        return {"services": {service.name: service.to_compose() for service in self.services}}

    def to_yaml(self) -> str:
        """Serialise the compose document."""
        return yaml.safe_dump(
            self.to_compose(),
            sort_keys=False,
            default_flow_style=False,
            width=1000,
        )


def build_topology() -> ServiceTopology:
    """Return the stack's four-service topology."""
    db = ServiceDefinition(
        name="db",
        image="${PG_IMAGE}",
        container_name=DB_CONTAINER,
        environment={
            "POSTGRES_DB": "${DB_NAME}",
            "POSTGRES_USER": "${DB_USER}",
            "POSTGRES_PASSWORD": "${DB_PASS}",
        },
        volumes=("${DATA_DIR}:/var/lib/postgresql/data",),
        healthcheck=HealthCheck(
            test=("CMD-SHELL", "pg_isready -U ${DB_USER} -d ${DB_NAME} -h 127.0.0.1"),
            interval="10s",
            timeout="5s",
            retries=6,
        ),
    )
    app = ServiceDefinition(
        name="app",
        image="${JOPLIN_IMAGE}",
        container_name=APP_CONTAINER,
        depends_on={"db": HEALTHY},
        expose=(str(APP_PORT),),
        environment={
            "APP_PORT": APP_PORT,
            "APP_BASE_URL": "https://${DOMAIN}",
            "DB_CLIENT": "pg",
            "POSTGRES_PASSWORD": "${DB_PASS}",
            "POSTGRES_DATABASE": "${DB_NAME}",
            "POSTGRES_USER": "${DB_USER}",
            "POSTGRES_PORT": 5432,
            "POSTGRES_HOST": "db",
            "MAILER_ENABLED": "${MAILER_ENABLED}",
            "MAILER_NOREPLY_NAME": "${NOREPLY_NAME}",
            "MAILER_NOREPLY_EMAIL": "${NOREPLY_EMAIL}",
            "MAILER_HOST": "${SMTP_HOST}",
            "MAILER_PORT": "${SMTP_PORT}",
            "MAILER_SECURITY": "${SMTP_SECURITY}",
            "MAILER_AUTH_USER": "${SMTP_USER}",
            "MAILER_AUTH_PASSWORD": "${SMTP_PASS}",
        },
        healthcheck=HealthCheck(
            test=(
                "CMD",
                "node",
                "-e",
                f"require('net').connect({APP_PORT},'127.0.0.1')"
                ".on('connect',()=>process.exit(0)).on('error',()=>process.exit(1))",
            ),
            interval="10s",
            timeout="3s",
            retries=20,
            start_period="20s",
        ),
    )
    nginx = ServiceDefinition(
        name="nginx",
        image="${NGINX_IMAGE}",
        container_name=PROXY_CONTAINER,
        depends_on={"app": HEALTHY},
        ports=("80:80", "443:443"),
        volumes=(
            "${NGINX_DIR}/conf.d:/etc/nginx/conf.d:ro",
            f"${{WEBROOT_DIR}}:{WEBROOT_MOUNT}",
            f"${{LE_DIR}}:{LETSENCRYPT_MOUNT}",
        ),
    )
    certbot = ServiceDefinition(
        name="certbot",
        image="${CERTBOT_IMAGE}",
        restart=None,
        profiles=(CERTBOT_PROFILE,),
        volumes=(
            f"${{WEBROOT_DIR}}:{WEBROOT_MOUNT}",
            f"${{LE_DIR}}:{LETSENCRYPT_MOUNT}",
        ),
    )
    return ServiceTopology(services=(db, app, nginx, certbot))


__all__ = [
    "APP_CONTAINER",
    "APP_PORT",
    "CERTBOT_PROFILE",
    "DB_CONTAINER",
    "HEALTHY",
    "HealthCheck",
    "LETSENCRYPT_MOUNT",
    "PROXY_CONTAINER",
    "ServiceDefinition",
    "ServiceTopology",
    "WEBROOT_MOUNT",
    "build_topology",
]
