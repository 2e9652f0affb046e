import uuid

from botengine.models import BotEngineConfig, BotFlow, BotFlowNode, DynamicMenu, LegacyMenu
from botengine.services.input_parser import parse_input
from botengine.services.menu_resolution import (
    INVALID_SELECTION_MESSAGE,
    SOURCE_DYNAMIC,
    SOURCE_FLOW,
    SOURCE_LEGACY,
    SOURCE_STATE_TABLE,
    DynamicMenuResolver,
    MenuOption,
    get_root_menu,
    invalid_selection_reply,
    resolve_menu,
    select_option,
)

OPTIONS = [
    MenuOption(key="A", title="A", option_type="message"),
    MenuOption(key="B", title="B", option_type="message"),
    MenuOption(key="C", title="C", option_type="message"),
]


class TestSelectOption:
    def test_by_number(self):
        assert select_option(OPTIONS, parse_input("2")).key == "B"

    def test_by_title(self):
        assert select_option(OPTIONS, parse_input("b")).key == "B"

    def test_out_of_range_and_garbage(self):
        assert select_option(OPTIONS, parse_input("9")) is None
        assert select_option(OPTIONS, parse_input("xyz")) is None
        assert select_option([], parse_input("1")) is None

    def test_title_substring(self):
        options = [
            MenuOption(key="PLANOS", title="Conhecer os planos", option_type="submenu"),
            MenuOption(key="SUP", title="Suporte", option_type="message"),
        ]
        assert select_option(options, parse_input("suporte")).key == "SUP"
        assert select_option(options, parse_input("planos")).key == "PLANOS"


class TestDynamicMenus:
    def test_root_render(self, db, tenant_id, menu_tree):
        rendered = resolve_menu(db, tenant_id, "MAIN")

        assert rendered.source == SOURCE_DYNAMIC
        assert [option.key for option in rendered.options] == ["PLANOS", "SUPORTE_MSG", "SITE"]
        assert rendered.text.startswith("Bem-vindo à loja!")
        assert "*1* - 📋 Planos" in rendered.text
        assert "*3* - Site" in rendered.text
        assert "*#* - Menu Principal" in rendered.text
        assert "*0* -" not in rendered.text

    def test_submenu_has_back_button(self, db, tenant_id, menu_tree):
        rendered = resolve_menu(db, tenant_id, "PLANOS")
        assert "*0* - ⬅️ Voltar" in rendered.text
        assert "*2* - Premium" in rendered.text

    def test_root_lookup(self, db, tenant_id, menu_tree):
        assert get_root_menu(db, tenant_id).menu_key == "MAIN"
        assert get_root_menu(db, uuid.uuid4()) is None

    def test_inactive_children_are_hidden(self, db, tenant_id, menu_tree):
        site = db.query(DynamicMenu).filter(DynamicMenu.menu_key == "SITE").one()
        site.is_active = False
        db.commit()

        rendered = resolve_menu(db, tenant_id, "MAIN")
        assert [option.key for option in rendered.options] == ["PLANOS", "SUPORTE_MSG"]

    def test_orphaned_menu_is_not_found(self, db, tenant_id, menu_tree):
        menu_tree.is_active = False
        db.commit()

        assert DynamicMenuResolver().resolve(db, tenant_id, "PLANOS") is None
        assert resolve_menu(db, tenant_id, "PLANOS").source == SOURCE_STATE_TABLE

    def test_sections_are_grouped(self, db, tenant_id):
        root = DynamicMenu(tenant_id=tenant_id, menu_key="ROOT", title="Root", is_root=True)
        db.add(root)
        db.flush()
        db.add_all(
            [
                DynamicMenu(
                    tenant_id=tenant_id,
                    parent_menu_id=root.id,
                    menu_key="X",
                    title="Xis",
                    section_title="Vendas",
                    menu_type="message",
                    display_order=1,
                ),
                DynamicMenu(
                    tenant_id=tenant_id,
                    parent_menu_id=root.id,
                    menu_key="Y",
                    title="Ipsilon",
                    section_title="Suporte",
                    menu_type="message",
                    display_order=2,
                ),
            ]
        )
        db.commit()

        text = resolve_menu(db, tenant_id, "ROOT").text
        assert "📌 *Vendas*" in text
        assert "📌 *Suporte*" in text
        assert "*2* - Ipsilon" in text


class TestResolverChain:
    def test_dynamic_wins_over_legacy(self, db, tenant_id, menu_tree):
        db.add(LegacyMenu(tenant_id=tenant_id, menu_key="PLANOS", title="Planos antigos", options=[]))
        db.commit()
        assert resolve_menu(db, tenant_id, "PLANOS").source == SOURCE_DYNAMIC

    def test_legacy_menu(self, db, tenant_id):
        db.add(
            LegacyMenu(
                tenant_id=tenant_id,
                menu_key="START",
                title="Início",
                header_message="Olá!",
                options=[
                    {"label": "Planos", "target_state": "PLANOS"},
                    {"label": "Atendente", "action": "transfer_to_human"},
                ],
            )
        )
        db.commit()

        rendered = resolve_menu(db, tenant_id, "START")
        assert rendered.source == SOURCE_LEGACY
        assert "*1* - Planos" in rendered.text
        assert rendered.options[0].option_type == "state"
        assert rendered.options[1].target == "transfer_to_human"

    def test_flow_node_state(self, db, tenant_id):
        flow = BotFlow(tenant_id=tenant_id, name="Boas-vindas")
        db.add(flow)
        db.flush()
        db.add(
            BotFlowNode(
                flow_id=flow.id,
                tenant_id=tenant_id,
                node_type="message",
                config={"state_name": "PROMO", "message_text": "Promoção do mês!"},
            )
        )
        db.commit()

        rendered = resolve_menu(db, tenant_id, "PROMO")
        assert rendered.source == SOURCE_FLOW
        assert rendered.text == "Promoção do mês!"

    def test_state_table_fallback(self, db, tenant_id):
        rendered = resolve_menu(db, tenant_id, "TESTE")
        assert rendered.source == SOURCE_STATE_TABLE
        assert "Escolha onde deseja testar" in rendered.text

    def test_terminal_text_from_config(self, db, tenant_id):
        db.add(BotEngineConfig(tenant_id=tenant_id, goodbye_message="Até logo!"))
        db.commit()
        assert resolve_menu(db, tenant_id, "ENCLOSED_TERMINAL").text == "Até logo!"

    def test_unknown_key(self, db, tenant_id):
        assert resolve_menu(db, tenant_id, "NAO_EXISTE") is None
        assert resolve_menu(db, tenant_id, None) is None


def test_invalid_selection_reply_prefixes_menu(db, tenant_id, menu_tree):
    rendered = resolve_menu(db, tenant_id, "MAIN")
    reply = invalid_selection_reply(rendered)
    assert reply.startswith(INVALID_SELECTION_MESSAGE)
    assert reply.endswith(rendered.text)
