"""
Configuration System Tests

Tests for the YAML configuration loader and factory functions.
"""

import asyncio
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def test_load_config_from_yaml():
    """Test loading configuration from YAML file."""
    print("=" * 60)
    print("TEST 1: Load configuration from YAML")
    print("=" * 60)

    from topic_research.config.loader import DEFAULT_CONFIG_PATH, load_config_from_yaml

    profile = load_config_from_yaml(DEFAULT_CONFIG_PATH, "test")
    print(f"\nLoaded profile: test")
    print(f"  LLM backend: {profile.llm.backend}")
    print(f"  Engines backend: {profile.engines.backend}")
    print(f"  Retry attempts: {profile.retry.max_attempts}")

    assert profile.llm.backend == "mock"
    assert profile.engines.backend == "mock"
    assert profile.retry.base_delay == 0.0
    assert profile.execution.run_timeout == 10.0
    print("\n[PASS] test profile loaded correctly")

    profile = load_config_from_yaml(DEFAULT_CONFIG_PATH, "anthropic")
    print(f"\nLoaded profile: anthropic")
    print(f"  LLM backend: {profile.llm.backend}")
    print(f"  Academic backend: {profile.engines.academic_backend}")

    assert profile.llm.backend == "anthropic"
    assert profile.engines.academic_backend == "arxiv"
    # Untouched sections keep their defaults
    assert profile.planning.min_queries == 15
    assert profile.subtopics.max_subtopics == 24
    print("\n[PASS] anthropic profile loaded correctly")

    try:
        load_config_from_yaml(DEFAULT_CONFIG_PATH, "does-not-exist")
        raise AssertionError("Expected KeyError for unknown profile")
    except KeyError as e:
        print(f"\nUnknown profile rejected: {e}")
    print("[PASS] Unknown profile raises KeyError")


def test_env_var_expansion():
    """Test ${VAR} expansion in YAML values."""
    print("\n" + "=" * 60)
    print("TEST 2: Environment variable expansion")
    print("=" * 60)

    from topic_research.config.loader import expand_env_vars, expand_env_vars_recursive

    os.environ["TOPIC_RESEARCH_TEST_URL"] = "http://searx.test:9000"
    try:
        assert expand_env_vars("${TOPIC_RESEARCH_TEST_URL}/search") == "http://searx.test:9000/search"
        nested = expand_env_vars_recursive(
            {"engines": {"urls": ["${TOPIC_RESEARCH_TEST_URL}", 3]}, "flag": True}
        )
        assert nested == {"engines": {"urls": ["http://searx.test:9000", 3]}, "flag": True}
        # Unknown variables are left untouched
        assert expand_env_vars("${TOPIC_RESEARCH_UNSET_VAR}") == "${TOPIC_RESEARCH_UNSET_VAR}"
        print("\n[PASS] Env var expansion works")
    finally:
        del os.environ["TOPIC_RESEARCH_TEST_URL"]


def test_unset_vars_become_null():
    """Test that unset ${VAR} values load as missing rather than literal text."""
    print("\n" + "=" * 60)
    print("TEST 3: Unset variables in profiles")
    print("=" * 60)

    import tempfile

    from topic_research.config.loader import load_config_from_yaml

    content = (
        "profiles:\n"
        "  custom:\n"
        "    llm:\n"
        "      backend: openrouter\n"
        "      api_key: ${TOPIC_RESEARCH_UNSET_KEY}\n"
    )
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "profiles.yaml"
        path.write_text(content)
        profile = load_config_from_yaml(path, "custom")

    print(f"\n  api_key: {profile.llm.api_key}")
    assert profile.llm.api_key is None
    print("\n[PASS] Unset variables load as None")


def test_load_config_env_fallback():
    """Test loading configuration from environment variables."""
    print("\n" + "=" * 60)
    print("TEST 4: Load configuration from environment (fallback)")
    print("=" * 60)

    from topic_research.config.loader import load_config, load_config_from_env

    saved = {k: os.environ.pop(k, None) for k in ("OPENROUTER_API_KEY", "ANTHROPIC_API_KEY")}
    try:
        profile = load_config_from_env()
        print(f"\nLoaded from environment without keys:")
        print(f"  LLM backend: {profile.llm.backend}")
        assert profile.llm.backend == "none"

        os.environ["ANTHROPIC_API_KEY"] = "sk-test"
        profile = load_config_from_env()
        print(f"  LLM backend with ANTHROPIC_API_KEY: {profile.llm.backend}")
        assert profile.llm.backend == "anthropic"
        assert profile.llm.api_key == "sk-test"

        profile = load_config(config_path=Path("/nonexistent/profiles.yaml"))
        assert profile.llm.backend == "anthropic"
        print("\n[PASS] Environment fallback works correctly")
    finally:
        os.environ.pop("ANTHROPIC_API_KEY", None)
        for key, value in saved.items():
            if value is not None:
                os.environ[key] = value


def test_load_config_main():
    """Test the main load_config function."""
    print("\n" + "=" * 60)
    print("TEST 5: Main load_config function")
    print("=" * 60)

    from topic_research.config import load_config

    profile = load_config(profile="test")
    print(f"\nLoaded profile: test")
    print(f"  LLM: {profile.llm.backend}")
    assert profile.llm.backend == "mock"
    print("\n[PASS] load_config with explicit profile works")

    original = os.environ.get("RESEARCH_PROFILE")
    os.environ["RESEARCH_PROFILE"] = "offline"
    try:
        profile = load_config()
        print(f"\nLoaded from RESEARCH_PROFILE=offline")
        print(f"  LLM: {profile.llm.backend}")
        assert profile.llm.backend == "none"
        print("\n[PASS] load_config with RESEARCH_PROFILE works")
    finally:
        if original:
            os.environ["RESEARCH_PROFILE"] = original
        else:
            del os.environ["RESEARCH_PROFILE"]


def test_factory_create_llm_provider():
    """Test creating the text-generation backend from config."""
    print("\n" + "=" * 60)
    print("TEST 6: Factory - create_llm_provider")
    print("=" * 60)

    from topic_research.config import LLMConfig, MockLLMProvider, create_llm_provider
    from topic_research.errors import ConfigurationError

    llm = create_llm_provider(LLMConfig(backend="mock"))
    print(f"\nCreated mock provider: {type(llm).__name__}")
    assert isinstance(llm, MockLLMProvider)
    print("[PASS] Mock provider created")

    assert create_llm_provider(LLMConfig(backend="none")) is None
    print("[PASS] Disabled generation returns None")

    saved = os.environ.pop("OPENROUTER_API_KEY", None)
    try:
        from topic_research.llm import adapters

        original_key = adapters.OPENROUTER_API_KEY
        adapters.OPENROUTER_API_KEY = None
        try:
            create_llm_provider(LLMConfig(backend="openrouter"))
            raise AssertionError("Expected ConfigurationError without an API key")
        except ConfigurationError as e:
            print(f"Missing key rejected: {e}")
        finally:
            adapters.OPENROUTER_API_KEY = original_key
    finally:
        if saved is not None:
            os.environ["OPENROUTER_API_KEY"] = saved
    print("[PASS] OpenRouter without key raises ConfigurationError")


def test_factory_create_engines():
    """Test creating engine clients from config."""
    print("\n" + "=" * 60)
    print("TEST 7: Factory - create_engines")
    print("=" * 60)

    from topic_research.config import EnginesConfig, MockEngine, create_engines, create_searxng_client
    from topic_research.engines import ArxivEngine, EngineId, SearxngClient, SearxngEngine

    engines = create_engines(EnginesConfig(backend="mock"))
    assert set(engines) == set(EngineId)
    assert all(isinstance(e, MockEngine) for e in engines.values())
    print("\n[PASS] Mock engines created for every engine")

    config = EnginesConfig(backend="searxng", academic_backend="arxiv", enabled=["general", "academic"])
    client = create_searxng_client(config)
    assert isinstance(client, SearxngClient)
    engines = create_engines(config, client)
    assert isinstance(engines[EngineId.GENERAL], SearxngEngine)
    assert isinstance(engines[EngineId.ACADEMIC], ArxivEngine)
    assert EngineId.VIDEO not in engines
    print("[PASS] SearXNG engines with arXiv academic backend created")

    try:
        create_engines(config, None)
        raise AssertionError("Expected ValueError without a SearXNG client")
    except ValueError as e:
        print(f"Missing client rejected: {e}")
    print("[PASS] SearXNG backend requires a client")


def test_factory_create_pipeline():
    """Test creating a full pipeline from the test profile."""
    print("\n" + "=" * 60)
    print("TEST 8: Factory - create_pipeline")
    print("=" * 60)

    from topic_research.config import (
        create_engines,
        create_llm_provider,
        create_pipeline,
        load_config,
    )

    profile = load_config(profile="test")
    llm = create_llm_provider(profile.llm)
    engines = create_engines(profile.engines)
    pipeline = create_pipeline(profile, llm, engines)

    print(f"\nCreated from 'test' profile:")
    print(f"  Planner: {type(pipeline.planner).__name__}")
    print(f"  Executor: {type(pipeline.executor).__name__}")
    assert pipeline.executor.retry_options.max_attempts == 2

    async def run():
        async with llm:
            async with pipeline:
                return await pipeline.run("graph databases")

    result = asyncio.run(run())

    print(f"  Results: {len(result.results)}")
    print(f"  Subtopics: {result.subtopics.metadata.total_topics}")
    assert result.results
    assert result.plan.engine_distribution
    assert result.system_health["agent_count"] >= 1
    print("\n[PASS] create_pipeline works end to end on mocks")


def test_profiles_load_without_searxng_url():
    """Test that bundled profiles load when SEARXNG_BASE_URL is unset."""
    print("\n" + "=" * 60)
    print("TEST 9: Bundled profiles without SEARXNG_BASE_URL")
    print("=" * 60)

    from topic_research.config.loader import (
        DEFAULT_CONFIG_PATH,
        list_profiles,
        load_config,
        load_config_from_yaml,
    )

    saved = os.environ.pop("SEARXNG_BASE_URL", None)
    try:
        profiles = list_profiles(DEFAULT_CONFIG_PATH)
        print(f"\n  Profiles: {sorted(profiles)}")
        assert {"dev", "anthropic", "offline", "test"} <= set(profiles)
        assert profiles["dev"].engines.searxng_url == "http://localhost:8080"

        profile = load_config_from_yaml(DEFAULT_CONFIG_PATH, "test")
        assert profile.llm.backend == "mock"

        # load_config must use the profile, not the environment fallback
        profile = load_config(profile="test")
        print(f"  test profile retry: attempts={profile.retry.max_attempts}, "
              f"base_delay={profile.retry.base_delay}")
        assert profile.engines.backend == "mock"
        assert profile.retry.max_attempts == 2
        assert profile.retry.base_delay == 0.0
        assert profile.execution.run_timeout == 10.0
        print("\n[PASS] Profiles load with defaults for unset variables")
    finally:
        if saved is not None:
            os.environ["SEARXNG_BASE_URL"] = saved


def main():
    """Run all tests."""
    print("\n" + "=" * 60)
    print("CONFIGURATION SYSTEM TESTS")
    print("=" * 60)

    test_load_config_from_yaml()
    test_env_var_expansion()
    test_unset_vars_become_null()
    test_load_config_env_fallback()
    test_load_config_main()
    test_factory_create_llm_provider()
    test_factory_create_engines()
    test_factory_create_pipeline()
    test_profiles_load_without_searxng_url()

    print("\n" + "=" * 60)
    print("ALL TESTS PASSED!")
    print("=" * 60)


if __name__ == "__main__":
    main()
