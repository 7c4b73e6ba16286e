"""HomeAgent - autonome Entscheidungs-Engine fuer das Zuhause."""
