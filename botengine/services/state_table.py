"""Built-in conversation states for tenants without a v2 menu tree.

Each state has a message, and either a list of options (keywords leading to
another state), a free-text capture, or an action run on entry.
"""

from dataclasses import dataclass, field

from botengine.services.global_commands import STATE_AWAITING_HUMAN, STATE_CLOSED, STATE_START

ACTION_GENERATE_TRIAL = "generate_trial"
ACTION_TRANSFER_TO_HUMAN = "transfer_to_human"

INVALID_OPTION_MESSAGE = "❌ Opção inválida. Por favor, escolha uma das opções disponíveis."


@dataclass(frozen=True)
class StateOption:
    inputs: tuple[str, ...]
    next_state: str


@dataclass(frozen=True)
class StateDefinition:
    message: str
    options: tuple[StateOption, ...] = ()
    collect_variable: str | None = None
    collect_next_state: str | None = None
    action: str | None = None
    # device_type/device_info handed to the trial generator
    action_params: dict = field(default_factory=dict)


STATE_TABLE: dict[str, StateDefinition] = {
    STATE_START: StateDefinition(
        message=(
            "🎬📺 Qualidade, estabilidade e o melhor do entretenimento para você!\n\n"
            "Escolha uma opção abaixo 👇\n\n"
            "1️⃣ Conhecer os Planos\n"
            "2️⃣ Teste Grátis 🎁\n"
            "3️⃣ Suporte Técnico 🛠️\n"
            "4️⃣ Falar com Atendente 👨‍💻\n"
            "5️⃣ Revenda ⭐"
        ),
        options=(
            StateOption(("1", "planos", "plano", "preços", "precos", "valores", "conhecer"), "PLANOS"),
            StateOption(("2", "teste", "testar", "gratis", "grátis", "free"), "TESTE"),
            StateOption(("3", "tecnico", "técnico", "problema", "ajuda"), "SUPORTE"),
            StateOption(("4", "falar"), "ATENDENTE"),
            StateOption(("5", "revenda", "revendedor", "parceiro"), "REVENDA"),
        ),
    ),
    "PLANOS": StateDefinition(
        message="📋 *Nossos Planos*\n\n{plans_list}\n\nPara contratar, entre em contato pelo suporte!\n\n0️⃣ Voltar ao menu",
    ),
    "TESTE": StateDefinition(
        message="📺 *Escolha onde deseja testar:*\n\n1️⃣ TV (Smart TV, TV Box)\n2️⃣ Celular (Android/iPhone)\n\n0️⃣ Voltar",
        options=(
            StateOption(("1", "tv", "smart", "box", "tvbox", "smart tv"), "TESTE_TV"),
            StateOption(("2", "celular", "cel", "android", "iphone", "ios", "smartphone"), "TESTE_CELULAR"),
        ),
    ),
    "TESTE_TV": StateDefinition(
        message=(
            "📺 *Teste para TV*\n\nPor favor, informe o modelo da sua TV:\n"
            '(Ex: Samsung 55", LG Smart, TV Box MXQ, etc.)'
        ),
        collect_variable="tv_model",
        collect_next_state="TESTE_GERANDO",
    ),
    "TESTE_CELULAR": StateDefinition(
        message="📱 *Teste para Celular*\n\nQual é o sistema do seu celular?\n1️⃣ Android\n2️⃣ iPhone (iOS)\n\n0️⃣ Voltar",
        options=(
            StateOption(("1", "android"), "TESTE_GERANDO_ANDROID"),
            StateOption(("2", "iphone", "ios", "apple"), "TESTE_GERANDO_IPHONE"),
        ),
    ),
    "TESTE_GERANDO": StateDefinition(
        message="⏳ *Gerando seu teste...*",
        action=ACTION_GENERATE_TRIAL,
        action_params={"device_type": "tv", "device_info_variable": "tv_model"},
    ),
    "TESTE_GERANDO_ANDROID": StateDefinition(
        message="⏳ *Gerando teste para Android...*",
        action=ACTION_GENERATE_TRIAL,
        action_params={"device_type": "celular", "device_info": "android"},
    ),
    "TESTE_GERANDO_IPHONE": StateDefinition(
        message="⏳ *Gerando teste para iPhone...*",
        action=ACTION_GENERATE_TRIAL,
        action_params={"device_type": "celular", "device_info": "iphone"},
    ),
    "TESTE_SUCESSO": StateDefinition(
        message=(
            "✅ *Teste gerado com sucesso!*\n\n"
            "👤 Usuário: {username}\n"
            "🔑 Senha: {password}\n"
            "{dns_line}"
            "⏰ O teste expira em {expiration}.\n\n"
            "Precisa de algo mais?\n1️⃣ Voltar ao menu\n0️⃣ Voltar"
        ),
        options=(StateOption(("1", "menu", "inicio"), STATE_START),),
    ),
    "TESTE_ERRO": StateDefinition(
        message=(
            "❌ *Não foi possível gerar o teste*\n\n"
            "Ocorreu um erro ao gerar seu teste.\n"
            "Por favor, tente novamente ou entre em contato com o suporte.\n\n"
            "1️⃣ Tentar novamente\n2️⃣ Falar com suporte\n0️⃣ Voltar ao menu"
        ),
        options=(
            StateOption(("1", "tentar", "novamente"), "TESTE"),
            StateOption(("2", "ajuda"), "SUPORTE"),
        ),
    ),
    "ATENDENTE": StateDefinition(
        message="👨‍💻 *Falar com Atendente*\n\nVocê será transferido para um atendente humano.\nPor favor, aguarde...",
        action=ACTION_TRANSFER_TO_HUMAN,
    ),
    "REVENDA": StateDefinition(
        message=(
            "⭐ *Programa de Revenda*\n\n"
            "Quer se tornar um revendedor e ter seu próprio negócio?\n\n"
            "📌 Benefícios:\n"
            "• Painel de controle exclusivo\n"
            "• Suporte técnico prioritário\n"
            "• Materiais de divulgação\n"
            "• Preços especiais\n\n"
            "Para mais informações, fale com nosso suporte!\n\n0️⃣ Voltar ao menu"
        ),
    ),
    "SUPORTE": StateDefinition(
        message="🛠️ *Suporte Técnico*\n\nPor favor, descreva brevemente seu problema ou dúvida:",
        collect_variable="support_message",
        collect_next_state="SUPORTE_ENCAMINHADO",
    ),
    "SUPORTE_ENCAMINHADO": StateDefinition(
        message=(
            "✅ *Mensagem recebida!*\n\n"
            "Sua solicitação foi encaminhada para nossa equipe.\n"
            "Um atendente entrará em contato em breve.\n\n"
            "Número do protocolo: #{ticket_id}"
        ),
        action=ACTION_TRANSFER_TO_HUMAN,
    ),
    STATE_AWAITING_HUMAN: StateDefinition(
        message="👤 *Aguardando atendente*\n\nVocê está na fila de atendimento.\nUm atendente irá responder em breve.",
    ),
    STATE_CLOSED: StateDefinition(
        message="👋 *Atendimento encerrado*\n\nObrigado pelo contato!",
    ),
}


def get_state_definition(state: str | None) -> StateDefinition | None:
    if not state:
        return None
    return STATE_TABLE.get(state)


def match_state_option(definition: StateDefinition, normalized: str) -> StateOption | None:
    """Equality first, then substring, across all options in order."""
    if not normalized:
        return None
    for option in definition.options:
        if normalized in option.inputs:
            return option
    for option in definition.options:
        if any(len(keyword) > 1 and keyword in normalized for keyword in option.inputs):
            return option
    return None
