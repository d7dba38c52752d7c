"""Pytest configuration and fixtures."""

import copy

import pytest

from registry.memory import InMemoryRegistry

SCOPE = "PPDSDemo.Plugins"


@pytest.fixture
def scope():
    return SCOPE


@pytest.fixture
def memory_registry():
    """Empty in-memory registry that knows the test assembly."""
    return InMemoryRegistry(assemblies=[SCOPE])


@pytest.fixture
def sample_document():
    """PluginType Foo.Bar with one PostOperation step and a post image."""
    return copy.deepcopy(
        {
            "pluginTypes": [{"typeName": "Foo.Bar", "assemblyId": SCOPE}],
            "steps": [
                {
                    "typeName": "Foo.Bar",
                    "message": "Create",
                    "primaryEntity": "account",
                    "stage": "PostOperation",
                    "mode": "Synchronous",
                    "rank": 1,
                    "filteringAttributes": [],
                    "configuration": "",
                }
            ],
            "images": [
                {
                    "stepKey": {
                        "typeName": "Foo.Bar",
                        "message": "Create",
                        "primaryEntity": "account",
                        "stage": "PostOperation",
                    },
                    "imageType": "PostImage",
                    "name": "PostImage",
                    "attributes": ["name"],
                }
            ],
        }
    )


@pytest.fixture
def contact_document():
    """Two plugin types: an update step with a pre-image, and a pre-create step."""
    step_key = {
        "typeName": "PPDSDemo.Plugins.ContactPostUpdatePlugin",
        "message": "Update",
        "primaryEntity": "contact",
        "stage": 40,
    }
    return {
        "pluginTypes": [
            {
                "typeName": "PPDSDemo.Plugins.ContactPostUpdatePlugin",
                "assemblyId": SCOPE,
            },
            {
                "typeName": "PPDSDemo.Plugins.AccountPreCreatePlugin",
                "assemblyId": SCOPE,
            },
        ],
        "steps": [
            dict(
                step_key,
                mode="Asynchronous",
                rank=1,
                filteringAttributes=["emailaddress1", "jobtitle", "telephone1"],
            ),
            {
                "typeName": "PPDSDemo.Plugins.AccountPreCreatePlugin",
                "message": "Create",
                "primaryEntity": "account",
                "stage": "PreOperation",
            },
        ],
        "images": [
            {
                "stepKey": step_key,
                "imageType": "PreImage",
                "name": "PreImage",
                "attributes": "emailaddress1,jobtitle,telephone1",
            }
        ],
    }
