import pytest

from agents.types import AgentInput, AgentServices
from audit_logger import audit_log
from data_models import AppSettings, Chat, Profile, Project
from persistence import InMemoryGateway
from tracer import global_tracer
from utils import run_logged

USER_ID = "user-1"
PROJECT_ID = "project-1"
CHAT_ID = "chat-1"


@pytest.fixture(autouse=True)
def isolated_audit_log(tmp_path):
    """Points the audit trail at a temporary file for each test."""
    original = audit_log.filepath
    audit_log.set_path(str(tmp_path / "audit_trail.csv"))
    yield
    audit_log.set_path(original)


@pytest.fixture(autouse=True)
def clean_tracer():
    global_tracer.reset()
    yield
    global_tracer.reset()


@pytest.fixture(autouse=True)
def inline_background_tasks(mocker):
    """Runs fire-and-forget work synchronously, with the same failure logging as the real threads."""

    def run_inline(target, *args, name="background-task", **kwargs):
        run_logged(target, *args, name=name, **kwargs)

    for module in ("agents.autonomous_agent", "conversation"):
        mocker.patch(f"{module}.spawn_background", side_effect=run_inline)


@pytest.fixture
def gateway():
    return InMemoryGateway(AppSettings(image_costs={"nano_banana": 10}))


@pytest.fixture
def project(gateway):
    return gateway.save_project(Project(id=PROJECT_ID, user_id=USER_ID, name="Obby Adventure", platform="Roblox Studio"))


@pytest.fixture
def chat(gateway, project):
    return gateway.save_chat(Chat(id=CHAT_ID, project_id=project.id, user_id=USER_ID, mode="build"))


@pytest.fixture
def profile(gateway):
    return gateway.save_profile(Profile(id=USER_ID, credits=50))


@pytest.fixture
def provider(mocker):
    return mocker.MagicMock(name="provider")


@pytest.fixture
def memory(mocker):
    memory = mocker.MagicMock(name="memory")
    memory.get_relevant_memories.return_value = "No memories stored yet."
    memory.get_memories_for_context.return_value = "No memories stored yet."
    return memory


@pytest.fixture
def services(provider, gateway, memory):
    return AgentServices(provider=provider, gateway=gateway, memory=memory)


@pytest.fixture
def make_input(project, chat, profile):
    """Builds an AgentInput for the seeded user, project and chat; keyword arguments override fields."""

    def factory(prompt="hello", **overrides):
        fields = {
            "prompt": prompt,
            "api_key": "test-key",
            "project": project,
            "chat": chat,
            "user_id": USER_ID,
            "profile": profile,
        }
        fields.update(overrides)
        return AgentInput(**fields)

    return factory
