"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Unique CRM - Stage rules                                                    ║
║                                                                              ║
║  Stage names are free text. Each rule lists the names it recognises; the     ║
║  name -> rule index is built once at import and refuses a name claimed by    ║
║  two rules. Matching ignores case and surrounding/duplicated whitespace.     ║
║                                                                              ║
║  is_won / is_lost on the stage select WON / LOST whatever the name.          ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple

from models.lead import LeadStatus, Temperature


class StageRule(str, Enum):
    ENGAGEMENT = "engagement"
    FIRST_CONTACT = "first_contact"
    QUALIFICATION = "qualification"
    SCHEDULING = "scheduling"
    CONSULTATION_SCHEDULED = "consultation_scheduled"
    PROPOSAL = "proposal"
    CLOSING = "closing"
    WON = "won"
    LOST = "lost"
    POST_SURGERY = "post_surgery"
    UPSELL = "upsell"
    AMBASSADOR = "ambassador"
    REACTIVATION = "reactivation"


class Capability(str, Enum):
    QUALIFY = "qualify"
    GAMIFICATION = "gamification"
    RECOMMEND_PROCEDURES = "recommend_procedures"


class Recipient(str, Enum):
    PERFORMER_OR_ASSIGNEE = "performer_or_assignee"
    ASSIGNEE = "assignee"


@dataclass(frozen=True)
class TaskTemplate:
    title: str
    description: str
    due_in: timedelta
    priority: str
    # Use the lead's next_contact_date as due date when it has one
    due_at_next_contact: bool = False


@dataclass(frozen=True)
class NotificationTemplate:
    title: str
    message: str  # formatted with name=<lead name>
    category: str
    recipient: Recipient = Recipient.ASSIGNEE


@dataclass(frozen=True)
class RuleEffects:
    names: Tuple[str, ...]
    tags: Tuple[str, ...] = ()
    tasks: Tuple[TaskTemplate, ...] = ()
    notification: Optional[NotificationTemplate] = None
    capability: Optional[Capability] = None
    temperature: Optional[Temperature] = None
    closes_as: Optional[LeadStatus] = None
    action: Optional[str] = None


RULES: Dict[StageRule, RuleEffects] = {
    StageRule.ENGAGEMENT: RuleEffects(
        names=("Engajamento",),
        tags=("origem:social", "temperatura:frio"),
        tasks=(
            TaskTemplate(
                "Responder interação em 2h",
                "Lead engajou nas redes sociais - responder rapidamente",
                timedelta(hours=2),
                "high",
            ),
        ),
        action="Tarefa criada: Responder interação",
    ),
    StageRule.FIRST_CONTACT: RuleEffects(
        names=("Contato Inicial", "Novo Lead"),
        tags=("status:primeiro_contato",),
        tasks=(
            TaskTemplate(
                "Fazer primeiro contato em 15min",
                "Lead novo - velocidade de resposta é crucial!",
                timedelta(minutes=15),
                "urgent",
            ),
        ),
        action="Tarefa urgente criada: Primeiro contato",
    ),
    StageRule.QUALIFICATION: RuleEffects(
        names=("Qualificação", "Em Qualificação"),
        tags=("etapa:qualificacao",),
        capability=Capability.QUALIFY,
    ),
    StageRule.SCHEDULING: RuleEffects(
        names=("Agendamento", "Agendar Consulta"),
        tags=("etapa:agendamento",),
        tasks=(
            TaskTemplate(
                "Agendar consulta em 24h",
                "Lead qualificado - agendar consulta com urgência",
                timedelta(hours=24),
                "high",
            ),
        ),
        action="Tarefa criada: Agendar consulta",
    ),
    StageRule.CONSULTATION_SCHEDULED: RuleEffects(
        names=("Consulta Agendada", "Aguardando Consulta"),
        tags=("etapa:consulta_agendada",),
        tasks=(
            TaskTemplate(
                "Confirmar consulta 24h antes",
                "Confirmar presença do paciente",
                timedelta(hours=24),
                "medium",
                due_at_next_contact=True,
            ),
        ),
        action="Lembrete de confirmação agendado",
    ),
    StageRule.PROPOSAL: RuleEffects(
        names=("Proposta Enviada", "Negociação"),
        tags=("etapa:proposta",),
        tasks=(
            TaskTemplate(
                "Follow-up de proposta em 48h",
                "Verificar se paciente tem dúvidas sobre a proposta",
                timedelta(hours=48),
                "high",
            ),
        ),
        notification=NotificationTemplate(
            "📋 Proposta Enviada",
            "Proposta enviada para {name} - acompanhar fechamento",
            "lead_proposal",
            Recipient.PERFORMER_OR_ASSIGNEE,
        ),
        action="Follow-up de proposta agendado",
    ),
    StageRule.CLOSING: RuleEffects(
        names=("Fechamento", "Venda Fechada", "Contrato"),
        tags=("etapa:fechamento", "prioridade:alta"),
        temperature=Temperature.HOT,
        notification=NotificationTemplate(
            "🔥 Lead em Fechamento!",
            "{name} está em fase final de fechamento",
            "lead_closing",
            Recipient.PERFORMER_OR_ASSIGNEE,
        ),
        action="Temperatura atualizada para HOT",
    ),
    StageRule.WON: RuleEffects(
        names=("Venda Ganha", "Ganho"),
        tags=("resultado:ganho",),
        closes_as=LeadStatus.WON,
        capability=Capability.GAMIFICATION,
        notification=NotificationTemplate(
            "🎉 VENDA FECHADA!",
            "Parabéns! Venda de {name} foi concluída!",
            "sale_won",
        ),
    ),
    StageRule.LOST: RuleEffects(
        names=("Perdido",),
        tags=("resultado:perdido",),
        closes_as=LeadStatus.LOST,
        action="Lead marcado como perdido",
    ),
    StageRule.POST_SURGERY: RuleEffects(
        names=("Pós-Cirurgia", "Pós-Operatório"),
        tags=("etapa:pos_cirurgia",),
        tasks=(
            TaskTemplate(
                "Ligar D+1 (dia seguinte)",
                "Verificar como paciente está após a cirurgia",
                timedelta(days=1),
                "high",
            ),
            TaskTemplate(
                "Acompanhamento D+7",
                "Verificar recuperação após 1 semana",
                timedelta(days=7),
                "medium",
            ),
            TaskTemplate(
                "Solicitar NPS D+30",
                "Pedir avaliação do paciente após 30 dias",
                timedelta(days=30),
                "medium",
            ),
        ),
        action="Checklist pós-cirurgia criado",
    ),
    StageRule.UPSELL: RuleEffects(
        names=("Oportunidade Upsell", "Upsell"),
        tags=("oportunidade:upsell",),
        tasks=(
            TaskTemplate(
                "Abordar cliente para upsell em 24h",
                "Apresentar procedimento complementar ao cliente",
                timedelta(hours=24),
                "high",
            ),
        ),
        capability=Capability.RECOMMEND_PROCEDURES,
    ),
    StageRule.AMBASSADOR: RuleEffects(
        names=("Embaixadora",),
        tags=("embaixadora:ativa",),
        notification=NotificationTemplate(
            "🌟 Nova Embaixadora!",
            "{name} entrou no programa de embaixadoras",
            "ambassador",
        ),
        action="Cliente adicionada ao programa de embaixadoras",
    ),
    StageRule.REACTIVATION: RuleEffects(
        names=("Reativação",),
        tags=("reativacao:em_andamento",),
        tasks=(
            TaskTemplate(
                "Reativar cliente em 24h",
                "Cliente inativo - preparar oferta especial para reativação",
                timedelta(hours=24),
                "high",
            ),
        ),
        action="Tarefa de reativação criada",
    ),
}

# Action recorded when the capability call succeeds
CAPABILITY_ACTIONS = {
    Capability.QUALIFY: "IA de qualificação acionada",
    Capability.GAMIFICATION: "Pontos de gamificação atribuídos",
    Capability.RECOMMEND_PROCEDURES: "Recomendações de procedimentos geradas",
}


def normalize_stage_name(name: Optional[str]) -> str:
    return " ".join((name or "").split()).casefold()


def build_index(rules: Dict[StageRule, RuleEffects]) -> Dict[str, StageRule]:
    index: Dict[str, StageRule] = {}
    for rule, effects in rules.items():
        for name in effects.names:
            key = normalize_stage_name(name)
            if not key:
                raise ValueError(f"{rule.value}: empty stage name")
            if key in index and index[key] != rule:
                raise ValueError(
                    f"Stage name '{name}' claimed by {index[key].value} and {rule.value}"
                )
            index[key] = rule
    return index


STAGE_INDEX = build_index(RULES)


def resolve_stage_rules(
    name: Optional[str], is_won: bool = False, is_lost: bool = False
) -> List[StageRule]:
    """Rules triggered by entering a stage, in table order, each at most once"""
    matched = set()
    rule = STAGE_INDEX.get(normalize_stage_name(name))
    if rule:
        matched.add(rule)
    if is_won:
        matched.add(StageRule.WON)
    if is_lost:
        matched.add(StageRule.LOST)
    return [r for r in RULES if r in matched]


# ==================== REFERRAL SCORING ====================

REFERRAL_SOURCES = frozenset({"indicacao", "indicação", "referral", "embaixadora"})

CONSULTATION_KEYWORDS = ("consulta realizada", "consultou", "consultada")
SURGERY_KEYWORDS = ("cirurgia realizada", "operou", "operado", "operada")

CONSULTATION_POINTS = 15
SURGERY_POINTS = 30


@dataclass(frozen=True)
class ReferralAward:
    points: int
    reason: str


def is_referral(source: Optional[str]) -> bool:
    return normalize_stage_name(source) in REFERRAL_SOURCES


def referral_awards(stage_name: str, lead_name: str) -> List[ReferralAward]:
    """Milestone awards for a referred lead entering `stage_name` (keyword match)"""
    key = normalize_stage_name(stage_name)
    awards = []
    if any(k in key for k in CONSULTATION_KEYWORDS):
        awards.append(ReferralAward(CONSULTATION_POINTS, f"Indicação consultou: {lead_name}"))
    if any(k in key for k in SURGERY_KEYWORDS):
        awards.append(ReferralAward(SURGERY_POINTS, f"Indicação operou: {lead_name}"))
    return awards
