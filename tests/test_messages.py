import pytest
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.messages import service
from app.api.v1.messages.schemas import ConversationStart
from app.core.cache import InMemoryCacheService
from app.core.exceptions import ServiceError
from app.core.models import Conversation, Message


@pytest.mark.asyncio
async def test_second_start_appends_to_existing_conversation(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    first = await service.start_conversation(
        db_session,
        cache,
        school.tara_user,
        ConversationStart(student_id=school.ana.id, parent_id=school.pam.id, subject="Homework", message="Hello"),
    )
    second = await service.start_conversation(
        db_session,
        cache,
        school.pam_user,
        ConversationStart(student_id=school.ana.id, teacher_id=school.tara.id, message="Hi, thanks"),
    )

    assert first.created is True
    assert second.created is False
    assert second.conversation_id == first.conversation_id
    assert (await db_session.execute(select(func.count(Conversation.id)))).scalar_one() == 1
    assert (await db_session.execute(select(func.count(Message.id)))).scalar_one() == 2


@pytest.mark.asyncio
async def test_opening_marks_only_the_other_sides_messages_read(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    started = await service.start_conversation(
        db_session,
        cache,
        school.tara_user,
        ConversationStart(student_id=school.ben.id, parent_id=school.pete.id, message="Ben did well today"),
    )
    assert (await service.unread_total(db_session, school.pete_user)).unread == 1
    assert (await service.unread_total(db_session, school.tara_user)).unread == 0

    inbox = await service.list_conversations(db_session, cache, school.pete_user)
    assert inbox.total_unread == 1
    assert inbox.conversations[0].counterpart_name == "Tara Teacher"

    # The sender opening the thread does not mark their own message read.
    await service.open_conversation(db_session, cache, school.tara_user, started.conversation_id)
    assert (await service.unread_total(db_session, school.pete_user)).unread == 1

    thread = await service.open_conversation(db_session, cache, school.pete_user, started.conversation_id)
    assert [m.is_read for m in thread.messages] == [True]
    assert (await service.unread_total(db_session, school.pete_user)).unread == 0

    inbox = await service.list_conversations(db_session, cache, school.pete_user)
    assert inbox.total_unread == 0


@pytest.mark.asyncio
async def test_reply_invalidates_both_inboxes(db_session: AsyncSession, cache: InMemoryCacheService, school) -> None:
    started = await service.start_conversation(
        db_session,
        cache,
        school.tara_user,
        ConversationStart(student_id=school.ana.id, parent_id=school.pam.id, message="Quick question"),
    )
    teacher_inbox = await service.list_conversations(db_session, cache, school.tara_user)
    assert teacher_inbox.conversations[0].last_message == "Quick question"

    await service.send_message(db_session, cache, school.pam_user, started.conversation_id, "Sure")

    teacher_inbox = await service.list_conversations(db_session, cache, school.tara_user)
    assert teacher_inbox.conversations[0].last_message == "Sure"
    assert teacher_inbox.total_unread == 1

    await service.open_conversation(db_session, cache, school.tara_user, started.conversation_id)
    assert (await service.unread_total(db_session, school.tara_user)).unread == 0
    # The parent has not opened the teacher's message yet.
    assert (await service.unread_total(db_session, school.pam_user)).unread == 1


@pytest.mark.asyncio
async def test_teacher_cannot_message_about_students_outside_their_sections(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    with pytest.raises(ServiceError) as exc:
        await service.start_conversation(
            db_session,
            cache,
            school.tara_user,
            ConversationStart(student_id=school.cal.id, parent_id=school.pam.id, message="Hello"),
        )
    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_parent_must_be_linked_to_the_student(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    with pytest.raises(ServiceError) as exc:
        await service.start_conversation(
            db_session,
            cache,
            school.pete_user,
            ConversationStart(student_id=school.ana.id, teacher_id=school.tara.id, message="Hello"),
        )
    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_non_participant_cannot_open_conversation(
    db_session: AsyncSession, cache: InMemoryCacheService, school
) -> None:
    started = await service.start_conversation(
        db_session,
        cache,
        school.tara_user,
        ConversationStart(student_id=school.ana.id, parent_id=school.pam.id, message="Hello"),
    )
    with pytest.raises(ServiceError) as exc:
        await service.open_conversation(db_session, cache, school.pete_user, started.conversation_id)
    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_contacts_for_teacher_and_parent(db_session: AsyncSession, school) -> None:
    teacher_contacts = await service.get_contacts(db_session, school.tara_user)
    assert [e.student_name for e in teacher_contacts.entries] == ["Ana Lopez", "Ben Okafor"]
    assert [c.name for c in teacher_contacts.entries[0].contacts] == ["Pam Lopez"]

    parent_contacts = await service.get_contacts(db_session, school.pam_user)
    by_child = {e.student_name: [c.name for c in e.contacts] for e in parent_contacts.entries}
    assert by_child == {"Ana Lopez": ["Tara Teacher"], "Cal Smith": []}


@pytest.mark.asyncio
async def test_messaging_endpoints(client: AsyncClient, login, school) -> None:
    login(school.ana_user)
    response = await client.get("/api/v1/messages/conversations")
    assert response.status_code == 403

    login(school.tara_user)
    response = await client.post(
        "/api/v1/messages/conversations",
        json={"student_id": str(school.ben.id), "parent_id": str(school.pete.id), "message": "Hello"},
    )
    assert response.status_code == 201
    conversation_id = response.json()["conversation_id"]

    login(school.pete_user)
    response = await client.get("/api/v1/messages/unread")
    assert response.json() == {"unread": 1}

    response = await client.post(
        f"/api/v1/messages/conversations/{conversation_id}/messages", json={"content": "Thanks!"}
    )
    assert response.status_code == 201
    assert response.json()["sender_role"] == "PARENT"

    response = await client.get(f"/api/v1/messages/conversations/{conversation_id}")
    assert response.status_code == 200
    assert [m["content"] for m in response.json()["messages"]] == ["Hello", "Thanks!"]
