SCHEMA_SQL = """
create table if not exists events (
  id bigserial primary key,
  title text not null,
  year integer not null,
  series varchar(3) not null,
  status text not null default 'not_allowed',
  created_at timestamptz not null default now(),
  unique (title, year, series)
);

create table if not exists documents (
  id bigserial primary key,
  event_id bigint not null references events (id),
  title text not null,
  href text not null,
  mirror text not null,
  status text not null default 'initial',
  created_at timestamptz not null default now(),
  unique (event_id, href)
);

create index if not exists documents_created_at_idx on documents (created_at);

create table if not exists images (
  id bigserial primary key,
  document_id bigint not null references documents (id),
  page_number integer not null check (page_number >= 0),
  url text not null,
  created_at timestamptz not null default now(),
  unique (document_id, page_number)
);
"""

DROP_SQL = """
drop table if exists images;
drop table if exists documents;
drop table if exists events;
"""
