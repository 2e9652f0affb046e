from botengine.services.wire_extractor import (
    extract_inbound_messages,
    extract_instance_name,
    extract_message_records,
    extract_message_text,
    extract_sender_phone,
    is_group_jid,
    normalize_event_name,
    normalize_jid_to_phone,
)

OWN_PHONE = "5511888887777"


def _upsert(record: dict, **extra) -> dict:
    return {"event": "messages.upsert", "instance": "loja-principal", "data": record, **extra}


class TestEventAndInstance:
    def test_event_name_variants(self):
        assert normalize_event_name("MESSAGES_UPSERT") == "messages.upsert"
        assert normalize_event_name("messages-upsert") == "messages.upsert"
        assert normalize_event_name("connection.update") == "connection.update"
        assert normalize_event_name(None) == ""

    def test_instance_name_paths(self):
        assert extract_instance_name({"instance": "a"}) == "a"
        assert extract_instance_name({"instance": {"instanceName": "b"}}) == "b"
        assert extract_instance_name({"data": {"instance": {"name": "c"}}}) == "c"
        assert extract_instance_name({"server": {"instanceName": "d"}}) == "d"
        assert extract_instance_name({"data": {}}) is None


class TestMessageRecords:
    def test_single_record_in_data(self):
        record = {"key": {"remoteJid": "5511999999999@s.whatsapp.net"}, "message": {"conversation": "oi"}}
        assert extract_message_records(_upsert(record)) == [record]

    def test_list_of_records(self):
        records = [{"key": {"remoteJid": "1"}}, {"key": {"remoteJid": "2"}}, "junk"]
        body = {"event": "messages.upsert", "data": {"messages": records}}
        assert len(extract_message_records(body)) == 2

    def test_text_sources(self):
        assert extract_message_text({"message": {"conversation": "oi"}}) == "oi"
        assert extract_message_text({"message": {"extendedTextMessage": {"text": "olá"}}}) == "olá"
        assert extract_message_text({"message": {"imageMessage": {"caption": "foto"}}}) == "foto"
        assert (
            extract_message_text({"message": {"buttonsResponseMessage": {"selectedDisplayText": "Planos"}}})
            == "Planos"
        )
        assert (
            extract_message_text({"message": {"listResponseMessage": {"singleSelectReply": {"selectedRowId": "2"}}}})
            == "2"
        )
        assert extract_message_text({"body": "flat"}) == "flat"
        assert extract_message_text({"message": {"stickerMessage": {}}}) == ""

    def test_ephemeral_envelope_is_unwrapped(self):
        record = {"message": {"ephemeralMessage": {"message": {"conversation": "sumiu"}}}}
        assert extract_message_text(record) == "sumiu"


class TestSenderPhone:
    def test_jid_normalization(self):
        assert normalize_jid_to_phone("5511999999999@s.whatsapp.net") == "5511999999999"
        assert normalize_jid_to_phone("5511999999999@c.us") == "5511999999999"
        assert normalize_jid_to_phone("123@s.whatsapp.net") is None
        assert normalize_jid_to_phone(None) is None

    def test_inbound_uses_remote_jid(self):
        record = {"key": {"remoteJid": "5511999999999@s.whatsapp.net", "fromMe": False}}
        assert extract_sender_phone(record, _upsert(record), OWN_PHONE) == "5511999999999"

    def test_falls_back_to_participant_alt(self):
        record = {"key": {"remoteJid": "abc@lid", "participantAlt": "5511977776666@s.whatsapp.net"}}
        assert extract_sender_phone(record, _upsert(record), OWN_PHONE) == "5511977776666"

    def test_own_number_is_never_returned(self):
        record = {"key": {"remoteJid": f"{OWN_PHONE}@s.whatsapp.net", "fromMe": False}}
        body = _upsert(record, sender=f"{OWN_PHONE}@s.whatsapp.net")
        assert extract_sender_phone(record, body, OWN_PHONE) is None

    def test_own_number_skipped_in_favor_of_next_candidate(self):
        record = {
            "key": {
                "remoteJid": f"{OWN_PHONE}@s.whatsapp.net",
                "participantAlt": "5511999999999@s.whatsapp.net",
            }
        }
        assert extract_sender_phone(record, _upsert(record), OWN_PHONE) == "5511999999999"

    def test_groups_are_ignored(self):
        assert is_group_jid("120363000000000000@g.us")
        record = {"key": {"remoteJid": "120363000000000000@g.us", "participant": "5511999999999@s.whatsapp.net"}}
        assert extract_sender_phone(record, _upsert(record), OWN_PHONE) is None

    def test_outbound_targets_the_recipient(self):
        record = {"key": {"remoteJid": "5511999999999@s.whatsapp.net", "fromMe": True}}
        body = _upsert(record, sender=f"{OWN_PHONE}@s.whatsapp.net")
        assert extract_sender_phone(record, body, OWN_PHONE) == "5511999999999"


class TestInboundMessages:
    def test_yields_normalized_messages(self):
        body = {
            "event": "messages.upsert",
            "data": {
                "messages": [
                    {
                        "key": {"remoteJid": "5511999999999@s.whatsapp.net", "fromMe": False, "id": "ABC"},
                        "message": {"conversation": "oi"},
                    },
                    {"key": {"remoteJid": "120363000000000000@g.us"}, "message": {"conversation": "grupo"}},
                    {"key": {"remoteJid": f"{OWN_PHONE}@s.whatsapp.net"}, "message": {"conversation": "eco"}},
                ]
            },
        }
        messages = list(extract_inbound_messages(body, OWN_PHONE))

        assert len(messages) == 1
        assert messages[0].sender_phone == "5511999999999"
        assert messages[0].text == "oi"
        assert messages[0].from_me is False
        assert messages[0].message_id == "ABC"
