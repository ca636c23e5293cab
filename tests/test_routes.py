"""
Testes da camada HTTP: sessão, formato de erro e fluxo ponta a ponta.
"""

import base64

import pytest

from tests.conftest import (TENANT_B, USER_EMAIL, ADMIN_EMAIL, make_actor,
                            session_headers, task_payload)
from taskmanager.utils.session import Role


@pytest.fixture
def as_leader(leader_actor):
    return session_headers(leader_actor)


@pytest.fixture
def as_user(user_actor):
    return session_headers(user_actor)


def create_task(client, headers, **overrides):
    response = client.post('/api/tasks', json=task_payload(**overrides), headers=headers)
    assert response.status_code == 201, response.get_json()
    return response.get_json()['task']


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'


def test_missing_session_is_401(client):
    response = client.get('/api/tasks')
    assert response.status_code == 401
    assert response.get_json() == {'error': 'Não autenticado.', 'code': 'UNAUTHENTICATED', 'field': None}


def test_unknown_route_uses_json_error(client, as_user):
    response = client.get('/api/nao-existe', headers=as_user)
    assert response.status_code == 404
    assert response.get_json()['code'] == 'NOT_FOUND'


class TestTasksApi:

    def test_create_and_read(self, client, seeded_rules, as_leader, as_user):
        task = create_task(client, as_leader)
        assert task['status'] == 'Em Atraso'
        assert task['justificationStatus'] == 'none'
        assert task['prazo'] == '2024-03-10'
        assert 'subtaskCount' not in task

        response = client.get(f"/api/tasks/{task['id']}", headers=as_user)
        assert response.status_code == 200
        assert response.get_json()['task']['responsavelEmail'] == USER_EMAIL

    def test_rule_violation_is_400(self, client, seeded_rules, as_leader):
        response = client.post('/api/tasks', json=task_payload(recorrencia='Anual'), headers=as_leader)
        assert response.status_code == 400
        body = response.get_json()
        assert body['code'] == 'RECORRENCIA_NOT_ALLOWED'
        assert body['field'] == 'recorrencia'

    def test_other_tenant_gets_404(self, client, seeded_rules, as_leader, foreign_admin_actor):
        task = create_task(client, as_leader)
        response = client.get(f"/api/tasks/{task['id']}", headers=session_headers(foreign_admin_actor))
        assert response.status_code == 404

    def test_impersonation_is_read_only(self, client, seeded_rules, as_leader):
        task = create_task(client, as_leader)
        viewer = session_headers(make_actor(ADMIN_EMAIL, Role.ADMIN, area='', impersonating=True))

        assert client.get(f"/api/tasks/{task['id']}", headers=viewer).status_code == 200
        response = client.patch(f"/api/tasks/{task['id']}", json={'observacoes': 'x'}, headers=viewer)
        assert response.status_code == 403
        assert response.get_json()['code'] == 'IMPERSONATION_READ_ONLY'

    def test_subtasks_and_gating(self, client, seeded_rules, as_leader):
        parent = create_task(client, as_leader)
        response = client.post('/api/tasks', headers=as_leader, json={
            'parentTaskId': parent['id'], 'atividade': 'Conferir extratos', 'responsavelEmail': USER_EMAIL,
        })
        assert response.status_code == 201
        subtask = response.get_json()['task']
        assert subtask['parentTaskAtividade'] == parent['atividade']

        parent_view = client.get(f"/api/tasks/{parent['id']}", headers=as_leader).get_json()['task']
        assert parent_view['status'] == 'Aguardando subtarefas'
        assert parent_view['subtaskCount'] == 1

        response = client.post(f"/api/tasks/{parent['id']}/complete", json={'realizado': '2024-03-09'},
                               headers=as_leader)
        assert response.status_code == 409
        assert response.get_json()['code'] == 'SUBTASKS_PENDING'

        listed = client.get(f"/api/tasks/{parent['id']}/subtasks", headers=as_leader).get_json()['tasks']
        assert [t['id'] for t in listed] == [subtask['id']]

    def test_list_with_status_filter(self, client, seeded_rules, as_leader):
        create_task(client, as_leader)
        create_task(client, as_leader, prazo='2099-12-31')
        response = client.get('/api/tasks?status=Em%20Andamento', headers=as_leader)
        assert [t['prazo'] for t in response.get_json()['tasks']] == ['2099-12-31']

    def test_duplicate(self, client, seeded_rules, as_leader):
        task = create_task(client, as_leader)
        response = client.post(f"/api/tasks/{task['id']}/duplicate", headers=as_leader)
        assert response.status_code == 201
        assert response.get_json()['task']['id'] != task['id']


class TestJustificationsApi:

    def test_late_completion_and_review(self, client, seeded_rules, as_leader, as_user, notifications):
        task = create_task(client, as_leader)

        response = client.post(f"/api/tasks/{task['id']}/complete", headers=as_user, json={
            'realizado': '2024-03-12', 'justificationDescription': 'Banco fora do ar',
        })
        assert response.status_code == 200
        body = response.get_json()['task']
        assert body['status'] == 'Concluído em Atraso'
        assert body['justificationStatus'] == 'pending'
        assert body['realizadoPor'] == USER_EMAIL

        queue = client.get('/api/justifications', headers=as_leader).get_json()['items']
        assert len(queue) == 1
        assert queue[0]['description'] == 'Banco fora do ar'
        assert queue[0]['task']['id'] == task['id']

        response = client.put(f"/api/justifications/{queue[0]['id']}/review", headers=as_leader,
                              json={'decision': 'refuse'})
        assert response.status_code == 400
        assert response.get_json()['code'] == 'MISSING_FIELD'

        response = client.put(f"/api/justifications/{queue[0]['id']}/review", headers=as_leader,
                              json={'action': 'refused', 'reviewComment': 'Anexe o comunicado do banco'})
        assert response.status_code == 200
        assert response.get_json()['justification']['status'] == 'refused'

        response = client.post('/api/justifications', headers=as_user, json={
            'taskId': task['id'], 'description': 'Comunicado anexado',
        })
        assert response.status_code == 201

        history = client.get(f"/api/tasks/{task['id']}/justifications", headers=as_user).get_json()
        assert [j['status'] for j in history['justifications']] == ['pending', 'refused']

        mine = client.get('/api/justifications/mine', headers=as_user).get_json()['items']
        assert mine[0]['justificationStatus'] == 'pending'

    def test_double_approve_is_409(self, client, seeded_rules, as_leader, as_user):
        task = create_task(client, as_leader)
        client.post(f"/api/tasks/{task['id']}/complete", headers=as_user, json={'realizado': '2024-03-12'})
        justification_id = client.get('/api/justifications', headers=as_leader).get_json()['items'][0]['id']

        url = f"/api/justifications/{justification_id}/review"
        assert client.post(url, headers=as_leader, json={'decision': 'approve'}).status_code == 200
        response = client.post(url, headers=as_leader, json={'decision': 'approve'})
        assert response.status_code == 409
        assert response.get_json()['code'] == 'INVALID_TRANSITION'

    def test_user_cannot_list_queue(self, client, as_user):
        assert client.get('/api/justifications', headers=as_user).status_code == 403


class TestRulesApi:

    def test_save_and_read(self, client, app, as_leader):
        response = client.put('/api/rules', headers=as_leader,
                              json={'area': 'Financeiro', 'allowedRecorrencias': ['Mensal', 'Anual']})
        assert response.status_code == 200
        assert response.get_json()['rule']['allowedRecorrencias'] == ['Mensal', 'Anual']

        rule = client.get('/api/rules/by-area?area=Financeiro', headers=as_leader).get_json()['rule']
        assert rule['updatedBy'] == 'lider@empresa.com'

    def test_foreign_tenant_save_is_forbidden(self, client, app, admin_actor):
        response = client.put('/api/rules', headers=session_headers(admin_actor), json={
            'tenantId': TENANT_B, 'area': 'Financeiro', 'allowedRecorrencias': ['Mensal'],
        })
        assert response.status_code == 403
        assert response.get_json()['code'] == 'TENANT_MISMATCH'

    def test_missing_rule_is_404(self, client, app, as_leader):
        assert client.get('/api/rules/by-area?area=Financeiro', headers=as_leader).status_code == 404


class TestEvidencesApi:

    def test_base64_upload_and_download(self, client, seeded_rules, as_leader, as_user):
        task = create_task(client, as_leader, prazo='2099-12-31')
        content = b'linha1;linha2\n'
        encoded = 'data:text/csv;base64,' + base64.b64encode(content).decode()

        response = client.post(f"/api/evidences/tasks/{task['id']}", headers=as_user, json={
            'fileName': 'conciliacao.csv', 'mimeType': 'text/csv', 'contentBase64': encoded,
        })
        assert response.status_code == 201
        evidence = response.get_json()['evidence']
        assert evidence['fileSize'] == len(content)

        download = client.get(f"/api/evidences/{evidence['id']}/download", headers=as_leader)
        assert download.status_code == 200
        assert download.data == content
        assert 'conciliacao.csv' in download.headers['Content-Disposition']

        listed = client.get(f"/api/evidences/tasks/{task['id']}", headers=as_user).get_json()['evidences']
        assert [e['id'] for e in listed] == [evidence['id']]

        assert client.delete(f"/api/evidences/{evidence['id']}", headers=as_user).status_code == 200
        assert client.get(f"/api/evidences/tasks/{task['id']}", headers=as_user).get_json()['evidences'] == []

    def test_invalid_base64(self, client, seeded_rules, as_leader, as_user):
        task = create_task(client, as_leader)
        response = client.post(f"/api/evidences/tasks/{task['id']}", headers=as_user, json={
            'fileName': 'x.pdf', 'mimeType': 'application/pdf', 'contentBase64': '@@@',
        })
        assert response.status_code == 400
        assert response.get_json()['code'] == 'INVALID_FILE'
