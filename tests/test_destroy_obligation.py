from __future__ import annotations

from ecsguard.analysis.rules import RuleId

from tests.ecs_helpers import job_source, locate

DESTROY = {RuleId.DESTROY_OBLIGATION}


def test_missing_destroy_reports_parameter(run_rules) -> None:
    body = """
    class Bury(JobEntity):
        def execute(self, index: In[int], entity: Entity, corpse: In[Corpse]):
            self.ecb.remove_component[Corpse](index, entity)
    """
    diagnostics = run_rules(body, rules=DESTROY)
    assert len(diagnostics) == 1
    diag = diagnostics[0]
    assert diag.rule_id == "ECS004"
    assert diag.message == "Owning entity was not destroyed for resource 'corpse'"
    line, col = locate(job_source(body), "corpse: In[Corpse]")
    assert diag.span == (line, col, line, col + len("corpse"))


def test_destroy_with_owning_entity_discharges(run_rules) -> None:
    body = """
    class Bury(JobEntity):
        def execute(self, index: In[int], entity: In[Entity], corpse: In[Corpse]):
            self.ecb.destroy_entity(index, entity)
    """
    assert run_rules(body, rules=DESTROY) == []


def test_destroy_of_other_entity_does_not_discharge(run_rules) -> None:
    body = """
    class Bury(JobEntity):
        def execute(self, index: In[int], owner: In[Entity], corpse: In[Corpse]):
            target = corpse.killer
            self.ecb.destroy_entity(index, target)
            self.ecb.destroy_entity(owner)
    """
    assert len(run_rules(body, rules=DESTROY)) == 1


def test_destroy_uses_the_owning_parameter_name(run_rules) -> None:
    body = """
    class Bury(JobEntity):
        def execute(self, index: In[int], owner: In[Entity], corpse: In[Corpse]):
            self.finish(index, owner)

        def finish(self, index, owner):
            self.ecb.destroy_entity(index, owner)
    """
    assert run_rules(body, rules=DESTROY) == []


def test_missing_owning_entity_parameter_skips_rule(run_rules) -> None:
    body = """
    class Bury(JobEntity):
        def execute(self, index: In[int], corpse: In[Corpse]):
            pass
    """
    assert run_rules(body, rules=DESTROY) == []


def test_conditional_destroy_does_not_discharge(run_rules) -> None:
    body = """
    class Bury(JobEntity):
        def execute(self, index: In[int], entity: In[Entity], corpse: In[Corpse]):
            if corpse.ready:
                self.ecb.destroy_entity(index, entity)
    """
    assert len(run_rules(body, rules=DESTROY)) == 1


def test_reacquire_does_not_exclude_destroy(run_rules) -> None:
    body = """
    class Bury(JobEntity):
        def execute(self, index: In[int], entity: In[Entity], corpse: In[Corpse]):
            self.ecb.add_component[Corpse](index, entity)
            self.ecb.destroy_entity(index, entity)
    """
    assert run_rules(body, rules=DESTROY) == []


def test_destroy_filter_uses_type_name(run_rules) -> None:
    body = """
    @with_all(Corpse)
    class Bury(JobEntity):
        def execute(self, index: In[int], entity: In[Entity]):
            pass
    """
    diagnostics = run_rules(body, rules=DESTROY)
    assert [diag.args for diag in diagnostics] == [("Corpse",)]


def test_release_only_resources_are_not_destroy_obligations(run_rules) -> None:
    body = """
    class ApplyPoison(JobEntity):
        def execute(self, index: In[int], entity: In[Entity], poisoned: In[Poisoned]):
            pass
    """
    assert run_rules(body, rules=DESTROY) == []


def test_pass_body_still_requires_destroy(run_rules) -> None:
    body = """
    class Bury(JobEntity):
        def execute(self, index: In[int], entity: In[Entity], corpse: In[Corpse]):
            pass
    """
    assert [diag.args for diag in run_rules(body, rules=DESTROY)] == [("corpse",)]
