"""
Testes do TaskService: criação, subtarefas, edição, conclusão e listagens.
"""

import pytest
from datetime import date

from taskmanager import db
from taskmanager.errors import (AuthorizationError, ConflictError, NotFoundError,
                                SubtaskBlockedError, ValidationError)
from taskmanager.models import Task, TaskStatus, Justification
from taskmanager.tasks.services import TaskService
from taskmanager.utils.session import Role

from tests.conftest import (TENANT_A, USER_EMAIL, OTHER_USER_EMAIL, LEADER_EMAIL,
                            PAST_PRAZO, FUTURE_PRAZO, make_actor, task_payload)

ON_TIME = date(2024, 3, 9)
LATE = date(2024, 3, 12)


def make_subtask(parent, actor, **overrides):
    data = {
        'parentTaskId': parent.id,
        'atividade': 'Conferência',
        'responsavelEmail': OTHER_USER_EMAIL,
    }
    data.update(overrides)
    return TaskService.create_task(actor, data)


class TestCreate:

    def test_leader_creates_task(self, make_task, leader_actor):
        task = make_task()
        assert task.id
        assert task.tenant_id == TENANT_A
        assert task.responsavel_email == USER_EMAIL
        assert task.created_by == LEADER_EMAIL
        assert task.updated_by == LEADER_EMAIL
        assert task.realizado is None
        assert task.current_status() is TaskStatus.OVERDUE

    def test_user_creates_own_task_with_defaults(self, seeded_rules, user_actor):
        data = task_payload()
        del data['area']
        del data['responsavelEmail']
        del data['responsavelNome']
        task = TaskService.create_task(user_actor, data)
        assert task.area == 'Financeiro'
        assert task.responsavel_email == USER_EMAIL
        assert task.responsavel_nome == 'Ana'

    def test_user_cannot_assign_to_others(self, seeded_rules, user_actor):
        with pytest.raises(AuthorizationError):
            TaskService.create_task(user_actor, task_payload(responsavelEmail=OTHER_USER_EMAIL))

    def test_leader_cannot_create_in_other_area(self, seeded_rules, leader_actor):
        with pytest.raises(AuthorizationError):
            TaskService.create_task(leader_actor, task_payload(area='Fiscal'))

    def test_disallowed_recorrencia_is_rejected(self, seeded_rules, leader_actor):
        with pytest.raises(ValidationError) as exc:
            TaskService.create_task(leader_actor, task_payload(recorrencia='Anual'))
        assert exc.value.code == 'RECORRENCIA_NOT_ALLOWED'
        assert Task.query.count() == 0

    def test_admin_ignores_rules(self, seeded_rules, admin_actor):
        task = TaskService.create_task(admin_actor, task_payload(recorrencia='Anual', area='Contábil'))
        assert task.recorrencia == 'Anual'

    def test_authorization_comes_before_validation(self, seeded_rules, user_actor):
        with pytest.raises(AuthorizationError):
            TaskService.create_task(user_actor, task_payload(area='Fiscal', prazo='invalida'))

    @pytest.mark.parametrize('field,value', [
        ('competenciaYm', '2024-13'),
        ('prazo', '10/03/2024'),
        ('prazo', ''),
        ('atividade', '  '),
        ('recorrencia', 'X' * 81),
    ])
    def test_invalid_fields(self, seeded_rules, leader_actor, field, value):
        with pytest.raises(ValidationError) as exc:
            TaskService.create_task(leader_actor, task_payload(**{field: value}))
        assert exc.value.field == field

    def test_impersonation_blocks_creation(self, seeded_rules):
        actor = make_actor(LEADER_EMAIL, Role.LEADER, impersonating=True)
        with pytest.raises(AuthorizationError) as exc:
            TaskService.create_task(actor, task_payload())
        assert exc.value.code == 'IMPERSONATION_READ_ONLY'

    def test_created_already_late_opens_justification(self, make_task):
        task = make_task(realizado=LATE.isoformat())
        assert task.current_status() is TaskStatus.DONE_LATE
        assert task.active_justification().status == 'pending'


class TestReads:

    def test_cross_tenant_is_not_found(self, make_task, foreign_admin_actor):
        task = make_task()
        with pytest.raises(NotFoundError):
            TaskService.get_task(foreign_admin_actor, task.id)

    def test_user_reads_only_own(self, make_task, other_user_actor, user_actor):
        task = make_task()
        assert TaskService.get_task(user_actor, task.id).id == task.id
        with pytest.raises(AuthorizationError):
            TaskService.get_task(other_user_actor, task.id)

    def test_list_scoping_by_role(self, make_task, leader_actor, admin_actor, user_actor,
                                  other_leader_actor, other_user_actor):
        mine = make_task()
        other = make_task(responsavelEmail=OTHER_USER_EMAIL)
        fiscal = make_task(actor=other_leader_actor, area='Fiscal', responsavelEmail='carla@empresa.com')
        subtask = make_subtask(mine, leader_actor, responsavelEmail=USER_EMAIL)

        assert {t.id for t in TaskService.list_tasks(admin_actor)} == {mine.id, other.id, fiscal.id}
        assert {t.id for t in TaskService.list_tasks(leader_actor)} == {mine.id, other.id}
        assert {t.id for t in TaskService.list_tasks(user_actor)} == {mine.id, subtask.id}
        assert {t.id for t in TaskService.list_tasks(other_user_actor)} == {other.id}

    def test_list_filters(self, make_task, leader_actor):
        march = make_task(atividade='Conciliação bancária')
        april = make_task(competenciaYm='2024-04', prazo=FUTURE_PRAZO.isoformat())

        assert [t.id for t in TaskService.list_tasks(leader_actor, {'competenciaYm': '2024-04'})] == [april.id]
        assert [t.id for t in TaskService.list_tasks(leader_actor, {'search': 'bancária'})] == [march.id]
        assert [t.id for t in TaskService.list_tasks(leader_actor, {'status': 'Em Atraso'})] == [march.id]
        assert [t.id for t in TaskService.list_tasks(leader_actor, {'status': 'Em Andamento'})] == [april.id]

    def test_list_orders_by_competencia_desc(self, make_task, leader_actor):
        march = make_task()
        april = make_task(competenciaYm='2024-04')
        assert [t.id for t in TaskService.list_tasks(leader_actor)] == [april.id, march.id]

    def test_invalid_status_filter(self, app, leader_actor):
        with pytest.raises(ValidationError):
            TaskService.list_tasks(leader_actor, {'status': 'Arquivada'})


class TestSubtasks:

    def test_subtask_inherits_from_parent(self, make_task, leader_actor):
        parent = make_task()
        subtask = make_subtask(parent, leader_actor)
        assert subtask.parent_task_id == parent.id
        assert subtask.prazo == parent.prazo
        assert subtask.area == parent.area
        assert subtask.competencia_ym == parent.competencia_ym
        assert parent.subtask_count == 1

    def test_user_cannot_create_subtask(self, make_task, user_actor):
        parent = make_task()
        with pytest.raises(AuthorizationError):
            make_subtask(parent, user_actor)

    def test_no_nested_subtasks(self, make_task, leader_actor):
        subtask = make_subtask(make_task(), leader_actor)
        with pytest.raises(ValidationError):
            make_subtask(subtask, leader_actor)

    def test_no_subtask_under_completed_parent(self, make_task, leader_actor):
        parent = make_task(realizado=ON_TIME.isoformat())
        with pytest.raises(ConflictError) as exc:
            make_subtask(parent, leader_actor)
        assert exc.value.code == 'TASK_CONCLUDED'

    def test_pending_subtask_blocks_parent_completion(self, make_task, leader_actor):
        parent = make_task()
        subtask = make_subtask(parent, leader_actor)
        assert parent.current_status() is TaskStatus.AWAITING_SUBTASKS

        with pytest.raises(SubtaskBlockedError):
            TaskService.complete_task(leader_actor, parent.id, ON_TIME.isoformat())
        assert db.session.get(Task, parent.id).realizado is None

        TaskService.complete_task(leader_actor, subtask.id, ON_TIME.isoformat())
        TaskService.complete_task(leader_actor, parent.id, ON_TIME.isoformat())
        assert parent.current_status() is TaskStatus.DONE

    def test_list_subtasks(self, make_task, leader_actor):
        parent = make_task()
        first = make_subtask(parent, leader_actor, atividade='Primeira')
        second = make_subtask(parent, leader_actor, atividade='Segunda')
        assert [s.id for s in TaskService.list_subtasks(leader_actor, parent.id)] == [first.id, second.id]

    def test_parent_assignee_reads_but_cannot_edit_subtask(self, make_task, leader_actor, user_actor):
        subtask = make_subtask(make_task(), leader_actor)
        assert TaskService.get_task(user_actor, subtask.id).id == subtask.id
        with pytest.raises(AuthorizationError):
            TaskService.update_task(user_actor, subtask.id, {'observacoes': 'ok'})


class TestUpdate:

    def test_prazo_change_is_audited_and_propagated(self, make_task, leader_actor, admin_actor):
        parent = make_task()
        subtask = make_subtask(parent, leader_actor)

        TaskService.update_task(admin_actor, parent.id, {'prazo': FUTURE_PRAZO.isoformat()})

        assert parent.prazo == FUTURE_PRAZO
        assert parent.prazo_modified_by == admin_actor.actor_id
        assert parent.updated_by == admin_actor.actor_id
        assert subtask.prazo == FUTURE_PRAZO
        assert subtask.prazo_modified_by == admin_actor.actor_id

    def test_subtask_prazo_cannot_be_set_directly(self, make_task, leader_actor):
        subtask = make_subtask(make_task(), leader_actor)
        with pytest.raises(ValidationError) as exc:
            TaskService.update_task(leader_actor, subtask.id, {'prazo': FUTURE_PRAZO.isoformat()})
        assert exc.value.field == 'prazo'

    def test_user_edits_only_observacoes_and_realizado(self, make_task, user_actor):
        task = make_task()
        TaskService.update_task(user_actor, task.id, {'observacoes': 'Aguardando extrato'})
        assert task.observacoes == 'Aguardando extrato'
        assert task.updated_by == USER_EMAIL

        with pytest.raises(AuthorizationError) as exc:
            TaskService.update_task(user_actor, task.id, {'prazo': FUTURE_PRAZO.isoformat()})
        assert exc.value.field == 'prazo'

    def test_unchanged_values_are_not_treated_as_edits(self, make_task, user_actor):
        task = make_task()
        TaskService.update_task(user_actor, task.id, {'area': 'Financeiro', 'observacoes': 'x'})
        assert task.observacoes == 'x'

    def test_leader_cannot_move_task_out_of_area(self, make_task, leader_actor):
        task = make_task()
        with pytest.raises(AuthorizationError):
            TaskService.update_task(leader_actor, task.id, {'area': 'Fiscal'})

    def test_recorrencia_change_is_revalidated(self, make_task, leader_actor):
        task = make_task()
        with pytest.raises(ValidationError) as exc:
            TaskService.update_task(leader_actor, task.id, {'recorrencia': 'Anual'})
        assert exc.value.code == 'RECORRENCIA_NOT_ALLOWED'
        assert db.session.get(Task, task.id).recorrencia == 'Mensal'

    def test_admin_moves_task_between_areas(self, make_task, admin_actor):
        task = make_task()
        TaskService.update_task(admin_actor, task.id, {'area': 'Fiscal', 'recorrencia': 'Anual'})
        assert (task.area, task.recorrencia) == ('Fiscal', 'Anual')

    def test_complete_on_time_through_patch(self, make_task, user_actor):
        task = make_task()
        TaskService.update_task(user_actor, task.id, {'realizado': ON_TIME.isoformat()})
        assert task.realizado_por == USER_EMAIL
        assert task.current_status() is TaskStatus.DONE
        assert Justification.query.count() == 0

    def test_reopen_without_justification(self, make_task, user_actor):
        task = make_task(realizado=ON_TIME.isoformat())
        TaskService.update_task(user_actor, task.id, {'realizado': None})
        assert task.realizado is None
        assert task.realizado_por is None

    def test_rejected_update_leaves_nothing_to_commit(self, make_task, leader_actor):
        parent = make_task()
        subtask = make_subtask(parent, leader_actor)

        with pytest.raises(SubtaskBlockedError):
            TaskService.update_task(leader_actor, parent.id, {
                'prazo': '2024-04-30', 'realizado': '2024-04-01',
            })
        # Um commit posterior na mesma sessão não pode gravar a edição recusada
        db.session.commit()
        db.session.expire_all()

        stored = db.session.get(Task, parent.id)
        assert stored.prazo == PAST_PRAZO
        assert stored.prazo_modified_by is None
        assert stored.realizado is None
        assert db.session.get(Task, subtask.id).prazo == PAST_PRAZO

    def test_recorrencia_longer_than_column(self, make_task, admin_actor):
        task = make_task()
        with pytest.raises(ValidationError) as exc:
            TaskService.update_task(admin_actor, task.id, {'recorrencia': 'X' * 81})
        assert exc.value.field == 'recorrencia'
        assert db.session.get(Task, task.id).recorrencia == 'Mensal'


class TestComplete:

    def test_late_completion_creates_one_pending(self, make_task, user_actor):
        task = make_task()
        TaskService.complete_task(user_actor, task.id, LATE.isoformat(), 'Cliente atrasou o envio')

        justifications = Justification.query.filter_by(task_id=task.id).all()
        assert len(justifications) == 1
        assert justifications[0].status == 'pending'
        assert justifications[0].description == 'Cliente atrasou o envio'
        assert justifications[0].created_by == USER_EMAIL
        assert task.current_status() is TaskStatus.DONE_LATE

    def test_changing_late_date_keeps_single_pending(self, make_task, user_actor):
        task = make_task()
        TaskService.complete_task(user_actor, task.id, LATE.isoformat())
        TaskService.complete_task(user_actor, task.id, date(2024, 3, 15).isoformat())
        assert Justification.query.filter_by(task_id=task.id).count() == 1

    def test_realizado_is_required(self, make_task, user_actor):
        task = make_task()
        with pytest.raises(ValidationError) as exc:
            TaskService.complete_task(user_actor, task.id, None)
        assert exc.value.code == 'MISSING_FIELD'

    def test_other_user_cannot_complete(self, make_task, other_user_actor):
        task = make_task()
        with pytest.raises(AuthorizationError):
            TaskService.complete_task(other_user_actor, task.id, ON_TIME.isoformat())

    def test_reopen_blocked_by_active_justification(self, make_task, user_actor):
        task = make_task()
        TaskService.complete_task(user_actor, task.id, LATE.isoformat())
        with pytest.raises(ConflictError) as exc:
            TaskService.update_task(user_actor, task.id, {'realizado': None})
        assert exc.value.code == 'ACTIVE_JUSTIFICATION_EXISTS'


class TestDuplicate:

    def test_duplicate_copies_fields_without_completion(self, make_task, leader_actor, admin_actor):
        source = make_task(realizado=ON_TIME.isoformat(), observacoes='Ver planilha')
        copy = TaskService.duplicate_task(admin_actor, source.id)

        assert copy.id != source.id
        assert copy.atividade == source.atividade
        assert copy.observacoes == 'Ver planilha'
        assert copy.realizado is None
        assert copy.created_by == admin_actor.actor_id

    def test_user_cannot_duplicate(self, make_task, user_actor):
        with pytest.raises(AuthorizationError):
            TaskService.duplicate_task(user_actor, make_task().id)

    def test_duplicate_subtask_under_completed_parent(self, make_task, leader_actor):
        parent = make_task()
        subtask = make_subtask(parent, leader_actor)
        TaskService.complete_task(leader_actor, subtask.id, ON_TIME.isoformat())
        TaskService.complete_task(leader_actor, parent.id, ON_TIME.isoformat())

        with pytest.raises(ConflictError) as exc:
            TaskService.duplicate_task(leader_actor, subtask.id)
        assert exc.value.code == 'TASK_CONCLUDED'
