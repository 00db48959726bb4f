"""Shared fixtures for codelens tests."""

import pytest

from codelens.analysis.parser import TypeScriptParser
from helpers import FakeGraph


@pytest.fixture(scope="session")
def parser():
    return TypeScriptParser()


@pytest.fixture
def fake_graph():
    return FakeGraph()


@pytest.fixture
def service_source():
    return '''import { Logger } from "./logger";
import * as path from "path";

export interface Repository {
  find(id: string): User;
}

/**
 * Loads users from storage.
 */
export class UserService implements Repository {
  private cache: Map<string, User> = new Map();

  constructor(private logger: Logger) {}

  find(id: string): User {
    if (!id || id.length === 0) {
      throw new Error("missing id");
    }
    return this.load(id);
  }

  load(id: string): User {
    this.logger.info(id);
    return buildUser(id);
  }
}

export function buildUser(id: string): User {
  return { id };
}

const MAX_USERS = 100, MIN_USERS = 1;
let counter = 0;
'''


@pytest.fixture
def cyclic_project(tmp_path):
    """Three files importing each other in a ring: a -> b -> c -> a."""
    src = tmp_path / "src"
    src.mkdir()
    (src / "a.ts").write_text('import { b } from "./b";\nexport function a() { return b(); }\n')
    (src / "b.ts").write_text('import { c } from "./c";\nexport function b() { return c(); }\n')
    (src / "c.ts").write_text('import { a } from "./a";\nexport function c() { return a(); }\n')
    return tmp_path
